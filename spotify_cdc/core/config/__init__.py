"""
Table configuration loading and building.
"""

from .table_config_loader import TableConfigBuilder, TableConfigLoader

__all__ = [
    "TableConfigLoader",
    "TableConfigBuilder",
]
