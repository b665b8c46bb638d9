"""
Repeat-occurrence rankings over incident rows.

Rankings are computed once from the full incident list; every filter or
search change produces a fresh view from that base via :func:`apply_view`
and an explicit :class:`ViewState`, never by patching a previous view.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from reit_common.normalize import clean_one_line, fold_text, resolve_field
from reit_common.schema import MAX_SUMMARY_ITEMS, MIN_REPEAT_COUNT, NOT_INFORMED

ELEMENT_FIELD = "ELEMENTO"
CAUSE_FIELD = "CAUSA"
FEEDER_FIELD = "ALIMENT."

TRAFO = "TRAFO"
FUSIVEL = "FUSIVEL"
RELIGADOR = "RELIGADOR"
ALL_TYPES = "TODOS"
ELEMENT_TYPES: Tuple[str, ...] = (TRAFO, FUSIVEL, RELIGADOR)


@dataclass(frozen=True)
class RankingEntry:
    value: str
    count: int
    occurrences: Tuple[Mapping[str, Any], ...]


@dataclass(frozen=True)
class ViewState:
    """Current type filter and search term of the element ranking."""

    type_filter: str = ALL_TYPES
    search: str = ""

    def __post_init__(self):
        object.__setattr__(self, "type_filter", fold_text(self.type_filter) or ALL_TYPES)

    @classmethod
    def create(cls, type_filter: str | None = None, search: str | None = None) -> "ViewState":
        return cls(type_filter=fold_text(type_filter) or ALL_TYPES, search=fold_text(search))


def _group(rows: Iterable[Mapping[str, Any]], field: str, clean) -> List[RankingEntry]:
    groups: Dict[str, List[Mapping[str, Any]]] = {}
    for row in rows:
        value = clean(resolve_field(row, field))
        if not value:
            continue
        groups.setdefault(value, []).append(row)
    entries = [RankingEntry(value, len(occ), tuple(occ)) for value, occ in groups.items()]
    # list.sort is stable: ties keep first-encounter order
    entries.sort(key=lambda entry: -entry.count)
    return entries


def _trimmed(value: Any) -> str:
    return str(value if value is not None else "").strip()


def rank_by_field(rows: Iterable[Mapping[str, Any]], field: str) -> List[RankingEntry]:
    """Group rows by the trimmed value of ``field``; most frequent first."""

    return _group(rows, field, _trimmed)


def rank_elements(rows: Iterable[Mapping[str, Any]], min_count: int = MIN_REPEAT_COUNT) -> List[RankingEntry]:
    """ELEMENTO ranking keeping only elements that repeat at least ``min_count`` times."""

    return [entry for entry in _group(rows, ELEMENT_FIELD, clean_one_line) if entry.count >= min_count]


def classify_element_type(element: Any) -> str:
    """``T*`` -> TRAFO, ``F*`` -> FUSIVEL, anything else -> RELIGADOR."""

    first = fold_text(element)[:1]
    if first == "T":
        return TRAFO
    if first == "F":
        return FUSIVEL
    return RELIGADOR


def apply_view(ranking: Sequence[RankingEntry], state: ViewState = ViewState()) -> List[RankingEntry]:
    """Filter the full ranking by element type, then by folded substring search."""

    type_filter = fold_text(state.type_filter)
    result = list(ranking)
    if type_filter in ELEMENT_TYPES:
        result = [entry for entry in result if classify_element_type(entry.value) == type_filter]

    term = fold_text(state.search)
    if term:
        result = [entry for entry in result if term in fold_text(entry.value)]
    return result


def _tally(occurrences: Iterable[Mapping[str, Any]], field: str) -> Counter:
    counts: Counter = Counter()
    for row in occurrences:
        value = clean_one_line(resolve_field(row, field))
        if value:
            counts[value] += 1
    return counts


def most_frequent_value(occurrences: Iterable[Mapping[str, Any]], field: str) -> str:
    """Highest-count value of ``field``; ties go to the value seen first."""

    best, best_count = "", 0
    for value, count in _tally(occurrences, field).items():
        if count > best_count:
            best, best_count = value, count
    return best


def summarize_distinct_values(
    occurrences: Iterable[Mapping[str, Any]],
    field: str = CAUSE_FIELD,
    max_items: int = MAX_SUMMARY_ITEMS,
) -> str:
    """
    One-line summary of the distinct values of ``field`` by descending count.

    ``"CHUVA, PÁSSARO …(+3)"`` when more than ``max_items`` values exist, and
    ``"Não informado"`` when no occurrence carries a value.
    """

    counts = _tally(occurrences, field)
    if not counts:
        return NOT_INFORMED
    ordered = [value for value, _ in sorted(counts.items(), key=lambda item: -item[1])]
    shown = ordered[:max_items]
    rest = len(ordered) - len(shown)
    line = ", ".join(shown)
    return f"{line} …(+{rest})" if rest > 0 else line


def split_by_type(view: Sequence[RankingEntry]) -> Dict[str, List[RankingEntry]]:
    sections: Dict[str, List[RankingEntry]] = {kind: [] for kind in ELEMENT_TYPES}
    for entry in view:
        sections[classify_element_type(entry.value)].append(entry)
    return sections


__all__ = [
    "ALL_TYPES",
    "CAUSE_FIELD",
    "ELEMENT_FIELD",
    "ELEMENT_TYPES",
    "FEEDER_FIELD",
    "FUSIVEL",
    "RELIGADOR",
    "TRAFO",
    "RankingEntry",
    "ViewState",
    "apply_view",
    "classify_element_type",
    "most_frequent_value",
    "rank_by_field",
    "rank_elements",
    "split_by_type",
    "summarize_distinct_values",
]
