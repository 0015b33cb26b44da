"""
Correlation ids for batch requests.

A custom id ties one provider request/result row back to the translation
unit it came from without a database lookup:

    {format}_{type}_{target locale}_{hash16}_{path fragment}

The hash covers (sender, target locale, type, relative path), so the id is
stable across retries of the same unit and unique within a batch. The
trailing path fragment is only there to make ids readable in provider
dashboards, so it is cut to whatever room is left under the 64 character
limit both providers put on ids. Ids stay within ``[A-Za-z0-9_-]``.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum

from autoi18n.core.models import RequestFormat, TranslationType

HASH_LENGTH = 16
PATH_FRAGMENT_LENGTH = 24
MAX_CUSTOM_ID_LENGTH = 64

_FRAGMENT_UNSAFE = re.compile(r"[^A-Za-z0-9-]")
_HASH_PATTERN = re.compile(r"^[0-9a-f]{16}$")

_FORMATS = {f.value for f in RequestFormat}
_TYPES = {t.value for t in TranslationType}


@dataclass(frozen=True)
class CustomIdParts:
    format: RequestFormat
    type: TranslationType
    target_locale: str
    hash: str
    path_fragment: str


def _value(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def unit_hash(sender_id: str, target_locale: str, file_type: str | Enum, relative_path: str) -> str:
    digest = hashlib.sha256()
    digest.update(sender_id.encode("utf-8"))
    digest.update(b"\0")
    digest.update(target_locale.encode("utf-8"))
    digest.update(b"\0")
    digest.update(_value(file_type).encode("utf-8"))
    digest.update(b"\0")
    digest.update(relative_path.encode("utf-8"))
    return digest.hexdigest()[:HASH_LENGTH]


def path_fragment(relative_path: str, limit: int = PATH_FRAGMENT_LENGTH) -> str:
    """Readable tail of the path, at most ``limit`` characters; underscores stand in for anything else."""
    if limit <= 0:
        return ""
    fragment = _FRAGMENT_UNSAFE.sub("_", relative_path.replace("\\", "/"))
    return fragment[-limit:] or "_"


def build_custom_id(
    sender_id: str,
    target_locale: str,
    file_type: TranslationType | str,
    relative_path: str,
    request_format: RequestFormat | str,
) -> str:
    """
    Derive the custom id of one (unit, target locale) request.

    The path fragment shrinks, down to nothing, so long locales still fit
    in ``MAX_CUSTOM_ID_LENGTH``.
    """
    prefix = "_".join([
        _value(request_format),
        _value(file_type),
        target_locale,
        unit_hash(sender_id, target_locale, file_type, relative_path),
    ])
    room = min(PATH_FRAGMENT_LENGTH, MAX_CUSTOM_ID_LENGTH - len(prefix) - 1)
    return f"{prefix}_{path_fragment(relative_path, room)}"


def parse_custom_id(custom_id: object) -> CustomIdParts | None:
    """
    Recover the structural fields of a custom id.
    
    Returns None for anything that is not a well-formed id; provider output
    is untrusted, so this never raises.
    """
    if not isinstance(custom_id, str):
        return None

    parts = custom_id.split("_")
    if len(parts) < 5:
        return None

    fmt, file_type, target_locale, hash_value = parts[:4]
    if fmt not in _FORMATS or file_type not in _TYPES:
        return None
    if not target_locale or not _HASH_PATTERN.match(hash_value):
        return None

    return CustomIdParts(
        format=RequestFormat(fmt),
        type=TranslationType(file_type),
        target_locale=target_locale,
        hash=hash_value,
        path_fragment="_".join(parts[4:]),
    )
