"""
Locale table and utilities.

The set of locales a deployment translates into is configured through
``Settings.supported_locales``; this module only knows display names and
how to normalize codes.
"""

from __future__ import annotations


# Human-readable names used in translation instructions
LOCALE_NAMES: dict[str, str] = {
    "en": "English",
    "ru": "Russian",
    "zh": "Chinese",
    "zh-tw": "Chinese (Traditional)",
    "es": "Spanish",
    "pt": "Portuguese",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
    "uk": "Ukrainian",
    "cs": "Czech",
    "sv": "Swedish",
    "fi": "Finnish",
    "tr": "Turkish",
    "ja": "Japanese",
    "ko": "Korean",
    "vi": "Vietnamese",
    "th": "Thai",
    "id": "Indonesian",
    "hi": "Hindi",
    "ar": "Arabic",
    "he": "Hebrew",
}


DEFAULT_SUPPORTED_LOCALES = ["en", "ru", "zh"]


def normalize_locale_code(code: str) -> str:
    """Normalize a locale code to its lowercase, dash-separated form."""
    return code.strip().lower().replace("_", "-")


def get_locale_name(code: str) -> str:
    """Get human-readable locale name, falling back to the code itself."""
    return LOCALE_NAMES.get(normalize_locale_code(code), code)


def parse_locale_list(value: str) -> list[str]:
    """
    Parse a comma separated locale list.
    
    Duplicates are dropped; the first occurrence wins.
    """
    codes: list[str] = []
    for part in value.split(","):
        code = normalize_locale_code(part)
        if code and code not in codes:
            codes.append(code)
    return codes or list(DEFAULT_SUPPORTED_LOCALES)
