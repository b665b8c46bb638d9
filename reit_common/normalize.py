from __future__ import annotations

import re
import unicodedata
from typing import Any, Mapping

from openpyxl.utils import column_index_from_string

_STRICT_DROP = re.compile(r"[^A-Z0-9]")
_LOOSE_SPLIT = re.compile(r"[^A-Z0-9_]")
_LOOSE_COLLAPSE = re.compile(r"[_\s]+")
_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def fold_text(raw: Any) -> str:
    """Trim, upper-case and strip diacritics; ``None`` becomes ``""``."""

    if raw is None:
        return ""
    text = str(raw).strip().upper()
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_key(raw: Any) -> str:
    """
    Strict key used for device/element identity.

    Everything outside ``[A-Z0-9]`` is dropped, so ``"TLM-82"``, ``"tlm82"``
    and ``" TLM 82 "`` all collapse to ``"TLM82"``.
    """

    return _STRICT_DROP.sub("", fold_text(raw))


def normalize_label(raw: Any) -> str:
    """
    Loose key used for cluster and category labels.

    Punctuation turns into spaces and runs of spaces/underscores collapse, so
    word boundaries survive: ``"Santa-Quitéria"`` -> ``"SANTA QUITERIA"``.
    """

    spaced = _LOOSE_SPLIT.sub(" ", fold_text(raw))
    return _LOOSE_COLLAPSE.sub(" ", spaced).strip()


def normalize_header(name: Any) -> str:
    """Canonical form of a spreadsheet header (``"Aliment."`` -> ``"ALIMENT"``)."""

    return _WHITESPACE.sub(" ", fold_text(name)).replace(".", "")


def clean_one_line(value: Any) -> str:
    """Collapse every whitespace run (newlines included) to one space."""

    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def cell_text(value: Any) -> str:
    """Render a decoded cell as trimmed text; integral floats lose their ``.0``."""

    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def column_letter_to_index(letter: str) -> int:
    """Zero-based index for an Excel column letter (``"A"`` -> 0, ``"AP"`` -> 41)."""

    return column_index_from_string(letter.strip().upper()) - 1


def resolve_field(record: Mapping[str, Any] | None, field: str) -> Any:
    """
    Look up a logical field in a record whose header spelling is unreliable.

    Tried in order: exact key, key without punctuation, case-insensitive key,
    then strict normalized key against every key (insertion order). Keys
    holding ``None`` are treated as absent. Returns ``""`` when nothing
    matches.
    """

    if not record:
        return ""

    value = record.get(field)
    if value is not None:
        return value

    stripped = _PUNCTUATION.sub("", field)
    if stripped != field:
        value = record.get(stripped)
        if value is not None:
            return value

    lowered = field.lower()
    for key, candidate in record.items():
        if candidate is not None and str(key).lower() == lowered:
            return candidate

    target = normalize_key(field)
    if not target:
        return ""
    for key, candidate in record.items():
        if candidate is not None and normalize_key(key) == target:
            return candidate
    return ""
