"""
Editable resources loaded from YAML.
"""

from autoi18n.resources.base import Resource
from autoi18n.resources.prompt_template import (
    PromptTemplate,
    TaskInstruction,
    load_translation_prompts,
)

__all__ = [
    "Resource",
    "PromptTemplate",
    "TaskInstruction",
    "load_translation_prompts",
]
