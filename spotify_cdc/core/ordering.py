"""
Dependency ordering of tables within a cycle.

Dimensions are merged before the facts that reference them. The graph is
small and declared (see catalog.STAR_SCHEMA), so a Kahn topological sort
that breaks ties by configuration order gives a stable total order.
"""

from spotify_cdc.core.errors import ConfigurationError
from spotify_cdc.core.models import TableConfig
from spotify_cdc.observability.logger import get_logger

logger = get_logger(__name__)


class DependencyOrderer:
    """
    Orders table configs so every table follows its prerequisites.

    Nodes are table names (DimUser, FactStream, ...); edges come from each
    config's depends_on.
    """

    def __init__(self, tables: list[TableConfig]):
        """
        Validate the dependency graph for a configured table set.

        Args:
            tables: Table configs in configuration order

        Raises:
            ConfigurationError: On duplicate tables, missing prerequisites or cycles
        """
        self.tables = list(tables)
        self._by_name: dict[str, TableConfig] = {}
        self._position: dict[str, int] = {}

        for idx, table in enumerate(self.tables):
            if table.table in self._by_name:
                raise ConfigurationError(
                    f"table '{table.table}' is configured more than once", table_id=table.table_id
                )
            self._by_name[table.table] = table
            self._position[table.table] = idx

        for table in self.tables:
            missing = [dep for dep in table.depends_on if dep not in self._by_name]
            if missing:
                raise ConfigurationError(
                    f"depends on {missing} which are not part of the configured table set",
                    table_id=table.table_id,
                )

        self._order = self._topological_sort()
        logger.debug(
            "Resolved table order",
            extra={"table_order": [t.table_id for t in self._order]},
        )

    def _topological_sort(self) -> list[TableConfig]:
        remaining = {name: set(cfg.depends_on) for name, cfg in self._by_name.items()}
        ordered: list[TableConfig] = []

        while remaining:
            ready = [name for name, deps in remaining.items() if not deps]
            if not ready:
                raise ConfigurationError(
                    f"dependency cycle between tables {sorted(remaining)}"
                )
            # Config order breaks ties between independent tables
            name = min(ready, key=self._position.__getitem__)
            ordered.append(self._by_name[name])
            del remaining[name]
            for deps in remaining.values():
                deps.discard(name)

        return ordered

    def order(self) -> list[TableConfig]:
        """Return the tables in a dependency-consistent total order."""
        return list(self._order)

    def prerequisites(self, table_name: str) -> set[str]:
        """Direct prerequisites of a table."""
        return set(self._by_name[table_name].depends_on)

    def dependents(self, table_name: str) -> set[str]:
        """Every table that transitively depends on table_name."""
        found: set[str] = set()
        frontier = [table_name]
        while frontier:
            current = frontier.pop()
            for name, cfg in self._by_name.items():
                if current in cfg.depends_on and name not in found:
                    found.add(name)
                    frontier.append(name)
        return found

