from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from reit_common.schema import (
    CATEGORY_BY_FEEDER,
    CATEGORY_BY_PREFIX,
    CATEGORY_ORDER,
    DEFAULT_CATEGORY,
)

from .reconcile import MergedRow

PREFIX_LENGTH = 3


@dataclass(frozen=True)
class CategoryTable:
    """Explicit feeder table, 3-letter prefix fallback and a default region."""

    by_feeder: Mapping[str, str] = field(default_factory=lambda: dict(CATEGORY_BY_FEEDER))
    by_prefix: Mapping[str, str] = field(default_factory=lambda: dict(CATEGORY_BY_PREFIX))
    default: str = DEFAULT_CATEGORY
    order: Tuple[str, ...] = CATEGORY_ORDER

    def with_overrides(
        self,
        feeders: Optional[Mapping[str, str]] = None,
        prefixes: Optional[Mapping[str, str]] = None,
    ) -> "CategoryTable":
        """Layer configured codes over the built-in tables; unseen regions join the order before the default."""

        by_feeder = {**self.by_feeder, **{str(k).strip().upper(): str(v) for k, v in (feeders or {}).items()}}
        by_prefix = {
            **self.by_prefix,
            **{str(k).strip().upper()[:PREFIX_LENGTH]: str(v) for k, v in (prefixes or {}).items()},
        }
        named = [c for c in self.order if c != self.default]
        for region in [*by_feeder.values(), *by_prefix.values()]:
            if region != self.default and region not in named:
                named.append(region)
        return CategoryTable(by_feeder, by_prefix, self.default, (*named, self.default))


DEFAULT_CATEGORY_TABLE = CategoryTable()


def categorize(row: MergedRow, table: CategoryTable = DEFAULT_CATEGORY_TABLE) -> str:
    """Region for a reconciled row: explicit table hit, then prefix, then the default."""

    reference = (row.feeder or row.new_installation or "").strip().upper()
    device = (row.protection_device or "").strip().upper()
    for code in (reference, device):
        if code and code in table.by_feeder:
            return table.by_feeder[code]

    prefix = (reference or device)[:PREFIX_LENGTH]
    return table.by_prefix.get(prefix, table.default)


__all__ = ["CategoryTable", "DEFAULT_CATEGORY_TABLE", "categorize"]
