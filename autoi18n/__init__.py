"""
autoi18n - batch translation orchestration.

Collects uploaded markdown and JSON sources, sends them to LLM batch APIs,
reconciles batch status in the background and turns provider output back
into translated files.
"""

__version__ = "0.1.0"
