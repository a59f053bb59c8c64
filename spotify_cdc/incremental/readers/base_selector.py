"""
Change selector interface.

A selector turns (table, watermark) into the rows changed after that
watermark, ordered by the CDC column ascending. Every select() call
re-issues the selection from scratch; a partially read stream is never
resumed.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

from spotify_cdc.core.models import CdcValue, ChangeRow, TableConfig, Watermark


def effective_watermark(table: TableConfig, stored: Watermark | None) -> Watermark | None:
    """
    Decide which watermark bounds the next selection.

    Precedence: initial_load (none at all) > stored watermark > from_date seed.

    Args:
        table: Table being loaded
        stored: Watermark currently in the store

    Returns:
        Watermark to select from, or None for a full load
    """
    if table.initial_load:
        return None
    if stored is not None:
        return stored
    if table.from_date is not None:
        return Watermark(table_id=table.table_id, value=table.from_date)
    return None


class BaseChangeSelector(ABC):
    """
    Abstract base class for change selectors.

    Subclasses implement _fetch(); select() wraps raw records into
    ChangeRow models.
    """

    def select(self, table: TableConfig, watermark: Watermark | None) -> Iterator[ChangeRow]:
        """
        Lazily yield the rows of a table changed after the watermark.

        Args:
            table: Table to read
            watermark: Lower bound (exclusive); None selects every row

        Yields:
            ChangeRow ordered by CDC value ascending
        """
        lower_bound = watermark.value if watermark is not None else None
        for record in self._fetch(table, lower_bound):
            yield ChangeRow.from_record(table, record)

    @abstractmethod
    def _fetch(self, table: TableConfig, lower_bound: CdcValue | None) -> Iterator[dict[str, Any]]:
        """
        Yield raw records with cdc_col > lower_bound, ascending by cdc_col.

        Args:
            table: Table to read
            lower_bound: Exclusive lower bound, None for all rows
        """
        pass
