"""
Table configuration management.

Loads the set of tables to synchronize from YAML or JSON files and
provides a builder for assembling table sets in code.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from spotify_cdc.core import catalog
from spotify_cdc.core.errors import ConfigurationError
from spotify_cdc.core.models import TableConfig


class TableConfigLoader:
    """
    Loads table configs from YAML or JSON files.

    Expected YAML format:
    ```yaml
    defaults:
      schema: silver
      target_schema: gold

    tables:
      - table: DimUser
        cdc_col: updated_at
        from_date: ""
      - table: FactStream
        cdc_col: stream_timestamp
    ```

    JSON files may hold the same object, or a bare list of
    {schema, table, cdc_col, from_date} records (the loop input shape).
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the table config loader.

        Args:
            config_path: Path to the YAML or JSON configuration file

        Raises:
            ConfigurationError: If the file does not exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(f"Table configuration file not found: {config_path}")

    def _read(self) -> Any:
        with open(self.config_path, encoding="utf-8") as f:
            if self.config_path.suffix.lower() == ".json":
                try:
                    return json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid JSON in {self.config_path}: {e}") from e
            try:
                return yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

    def load_tables(self) -> list[TableConfig]:
        """
        Load and validate table configs, preserving file order.

        Returns:
            List of TableConfig models

        Raises:
            ConfigurationError: If the file is malformed or a table is invalid
        """
        config = self._read()

        defaults: dict[str, Any] = {}
        if isinstance(config, list):
            entries = config
        elif isinstance(config, dict) and "tables" in config:
            entries = config["tables"]
            defaults = config.get("defaults") or {}
        else:
            raise ConfigurationError(
                f"{self.config_path} must contain a 'tables' section or a list of tables"
            )

        if not isinstance(entries, list) or not entries:
            raise ConfigurationError(f"{self.config_path} does not list any tables")
        if not isinstance(defaults, dict):
            raise ConfigurationError("'defaults' must be a mapping")

        return [self._parse_table(entry, defaults, idx) for idx, entry in enumerate(entries)]

    def _parse_table(self, entry: Any, defaults: dict[str, Any], idx: int) -> TableConfig:
        """
        Parse a single table definition.

        Args:
            entry: The table definition from the file
            defaults: File-level defaults applied beneath the entry
            idx: Position of the entry (for error messages)

        Raises:
            ConfigurationError: If the definition is invalid
        """
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Table entry #{idx} must be a mapping")
        if not entry.get("table"):
            raise ConfigurationError(f"Table entry #{idx} is missing 'table'")

        merged = {**defaults, **entry}
        table_ref = f"{merged.get('schema', catalog.DEFAULT_SOURCE_SCHEMA)}.{merged['table']}"
        try:
            return TableConfig(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid table config: {e}", table_id=table_ref) from e


class TableConfigBuilder:
    """
    Programmatically build table sets (for tests or dynamic configs).
    """

    def __init__(self, schema: str = "silver", target_schema: str = "gold"):
        self.schema = schema
        self.target_schema = target_schema
        self.tables: list[dict[str, Any]] = []

    def add_table(
        self,
        table: str,
        cdc_col: str | None = None,
        primary_key: list[str] | None = None,
        from_date: Any = None,
        **extra: Any,
    ) -> "TableConfigBuilder":
        """Add a table; unset fields fall back to the star-schema catalog."""
        entry: dict[str, Any] = {
            "schema": self.schema,
            "table": table,
            "target_schema": self.target_schema,
            "from_date": from_date,
        }
        if cdc_col:
            entry["cdc_col"] = cdc_col
        if primary_key:
            entry["primary_key"] = primary_key
        entry.update(extra)
        self.tables.append(entry)
        return self

    def add_star_schema(self) -> "TableConfigBuilder":
        """Add the four dimensions and the stream fact in declaration order."""
        for name in ("DimUser", "DimArtist", "DimTrack", "DimDate", "FactStream"):
            self.add_table(name)
        return self

    def build(self) -> list[TableConfig]:
        """
        Build and return validated table configs.

        Raises:
            ConfigurationError: If an entry is invalid
        """
        built = []
        for entry in self.tables:
            try:
                built.append(TableConfig(**entry))
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid table config: {e}", table_id=f"{entry['schema']}.{entry['table']}"
                ) from e
        return built
