"""
Change selector over in-memory source tables.
"""

from collections.abc import Iterator
from typing import Any

from spotify_cdc.core.errors import InfrastructureFailure
from spotify_cdc.core.models import CdcValue, TableConfig, coerce_cdc_value

from .base_selector import BaseChangeSelector


def _cdc_or_none(record: dict[str, Any], column: str) -> CdcValue | None:
    try:
        return coerce_cdc_value(record.get(column))
    except ValueError:
        return None


class InMemoryChangeSelector(BaseChangeSelector):
    """
    Selects changes from a mapping of table id -> list of row dicts.

    Mirrors SQL semantics: rows whose CDC value is NULL never satisfy
    `cdc_col > watermark` and sort last on a full load.
    """

    def __init__(self, sources: dict[str, list[dict[str, Any]]]):
        """
        Initialize the selector.

        Args:
            sources: Source tables keyed by "<schema>.<table>"; shared, not copied,
                so rows added later are visible to later selections
        """
        self.sources = sources

    def _fetch(self, table: TableConfig, lower_bound: CdcValue | None) -> Iterator[dict[str, Any]]:
        if table.table_id not in self.sources:
            raise InfrastructureFailure(table.table_id, "source table does not exist")

        candidates = []
        for record in list(self.sources[table.table_id]):
            cdc_value = _cdc_or_none(record, table.cdc_col)
            if lower_bound is not None and (cdc_value is None or not cdc_value > lower_bound):
                continue
            candidates.append((cdc_value, record))

        # sorted() is stable, so equal CDC values keep insertion order
        candidates.sort(key=lambda item: (item[0] is None, item[0] if item[0] is not None else 0))
        for _, record in candidates:
            yield dict(record)
