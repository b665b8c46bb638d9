"""
Shareable outputs of an element ranking view: the chat-friendly text report
and the flat Excel export (one line per occurrence).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from reit_common.normalize import clean_one_line, resolve_field
from reit_common.schema import MAX_SUMMARY_ITEMS, NOT_INFORMED
from reit_merge.tables import records_frame, write_frame_xlsx

from .incidents import parse_date
from .ranking import (
    ALL_TYPES,
    CAUSE_FIELD,
    ELEMENT_TYPES,
    FEEDER_FIELD,
    FUSIVEL,
    RELIGADOR,
    TRAFO,
    RankingEntry,
    ViewState,
    apply_view,
    most_frequent_value,
    split_by_type,
    summarize_distinct_values,
)

RULE = "━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━"
MAX_ITEMS_PER_SECTION = 30
EXPORT_COLUMNS = ("ELEMENTO", "DATA", "ALIMENTADOR", "INCIDÊNCIA")
EXPORT_SHEET = "Ranking_Elemento"

TYPE_LABELS = {TRAFO: "TRAFO", FUSIVEL: "FUSÍVEL", RELIGADOR: "RELIGADOR", ALL_TYPES: "TODOS"}
TYPE_ICONS = {TRAFO: "🔌", FUSIVEL: "💡", RELIGADOR: "⚡"}


def _fmt_day(value: Optional[date | str]) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return value.strftime("%d/%m/%Y")


def period_label(start: Optional[date | str] = None, end: Optional[date | str] = None) -> str:
    di, df = _fmt_day(start), _fmt_day(end)
    if di and df:
        return f"*{di}* até *{df}*"
    if di:
        return f"a partir de *{di}*"
    if df:
        return f"até *{df}*"
    return "*Todos os registros (sem filtro de data)*"


def _header(state: ViewState, period: str) -> List[str]:
    lines = [
        RULE,
        "📋 *RELATÓRIO DE REITERADAS*",
        RULE,
        f"🧩 Tipo: *{TYPE_LABELS.get(state.type_filter, state.type_filter or 'N/D')}*",
        f"📅 Período: {period}",
    ]
    if state.search:
        lines.append(f"🔎 Busca: *{state.search}*")
    return lines


def _footer(link: Optional[str]) -> List[str]:
    lines = [RULE]
    if link:
        lines.extend(["🔗 *Ver mais detalhes:*", link])
    return lines


def build_ranking_report(
    ranking: Sequence[RankingEntry],
    state: ViewState = ViewState(),
    *,
    start: Optional[date | str] = None,
    end: Optional[date | str] = None,
    link: Optional[str] = None,
    max_items: int = MAX_ITEMS_PER_SECTION,
    max_causes: int = MAX_SUMMARY_ITEMS,
) -> str:
    """
    Render the current view as a chat message.

    Elements are split into TRAFO / FUSÍVEL / RELIGADOR sections, each item
    showing its most frequent feeder and every distinct cause. Sections are
    capped at ``max_items`` with a "…e mais N" line; types with no repeat
    get an observation line.
    """

    if not ranking:
        return "⚠️ Nenhum ranking disponível no momento."

    view = apply_view(ranking, state)
    lines = _header(state, period_label(start, end))

    if not view:
        lines.extend(["", "😕 Nenhum elemento encontrado para o filtro atual.", *_footer(link)])
        return "\n".join(lines)

    lines.extend(["", ""])
    sections = split_by_type(view)
    shown_types = ELEMENT_TYPES if state.type_filter not in ELEMENT_TYPES else (state.type_filter,)
    position = 1

    for kind in shown_types:
        entries = sections[kind]
        if not entries:
            continue
        label = TYPE_LABELS[kind]
        lines.extend([f"{TYPE_ICONS[kind]} *{label}*", ""])
        for entry in entries[:max_items]:
            feeder = most_frequent_value(entry.occurrences, FEEDER_FIELD) or NOT_INFORMED
            causes = summarize_distinct_values(entry.occurrences, CAUSE_FIELD, max_causes)
            lines.append(f"*{position:02d})* {clean_one_line(entry.value)}  *({entry.count} vezes)*")
            lines.append(f"   ├─ 🧭 Alimentador: {feeder}")
            lines.append(f"   └─ 🧾 Causas: {causes}")
            lines.append("")
            position += 1
        rest = len(entries) - max_items
        if rest > 0:
            lines.append(f"…e mais *{rest}* item(ns) em {label} (refine no painel para ver tudo).")
            lines.append("")
        lines.append("")

    empty = [kind for kind in shown_types if not sections[kind]]
    if empty and len(shown_types) > 1:
        lines.append("ℹ️ *Observações*")
        lines.extend(f"- {TYPE_ICONS[k]} Não reiterou nenhum *{TYPE_LABELS[k]}*" for k in empty)
        lines.append("")
    elif empty:
        kind = empty[0]
        lines.append(f"ℹ️ *Observação:* {TYPE_ICONS[kind]} Não reiterou nenhum *{TYPE_LABELS[kind]}*")
        lines.append("")

    lines.extend(_footer(link))
    return "\n".join(lines).strip()


def ranking_export_records(view: Sequence[RankingEntry]) -> List[Dict[str, str]]:
    """One record per occurrence, sorted by element then ISO date."""

    records = []
    for entry in view:
        element = str(entry.value or "").strip()
        for occurrence in entry.occurrences:
            when = parse_date(resolve_field(occurrence, "DATA"))
            records.append(
                {
                    "ELEMENTO": element,
                    "DATA": when.isoformat() if when else "",
                    "ALIMENTADOR": str(resolve_field(occurrence, FEEDER_FIELD) or "").strip(),
                    "INCIDÊNCIA": str(resolve_field(occurrence, "INCIDENCIA") or "").strip(),
                }
            )
    records.sort(key=lambda r: (r["ELEMENTO"], r["DATA"]))
    for record in records:
        record["DATA"] = _fmt_day(record["DATA"])
    return records


def export_ranking_xlsx(view: Sequence[RankingEntry]) -> bytes:
    """Workbook with the ``Ranking_Elemento`` sheet for the given view."""

    records = ranking_export_records(view)
    if not records:
        raise ValueError("No occurrences to export.")
    return write_frame_xlsx(records_frame(records, EXPORT_COLUMNS), EXPORT_SHEET)


def export_filename(start: Optional[str] = None, end: Optional[str] = None, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    if start and end:
        period = f"{start}_a_{end}"
    elif start:
        period = f"de_{start}"
    elif end:
        period = f"ate_{end}"
    else:
        period = "sem_filtro_data"
    return f"Ranking_Elemento_{period}_{now:%Y-%m-%d_%H%M}.xlsx"


__all__ = [
    "EXPORT_COLUMNS",
    "build_ranking_report",
    "export_filename",
    "export_ranking_xlsx",
    "period_label",
    "ranking_export_records",
]
