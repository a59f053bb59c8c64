"""
Declared star schema for the Spotify warehouse.

Each entry describes a table's business key, the tables it must be merged
after, and (for facts) the foreign keys that must resolve at merge time.
Table configs inherit these defaults unless they override them.
"""

from typing import Any

STAR_SCHEMA: dict[str, dict[str, Any]] = {
    "DimUser": {
        "primary_key": ("user_id",),
        "cdc_col": "updated_at",
        "depends_on": (),
        "references": {},
    },
    "DimArtist": {
        "primary_key": ("artist_id",),
        "cdc_col": "updated_at",
        "depends_on": (),
        "references": {},
    },
    # artist_id is denormalized onto tracks, so the edge orders the merge
    # but is not checked row by row
    "DimTrack": {
        "primary_key": ("track_id",),
        "cdc_col": "updated_at",
        "depends_on": ("DimArtist",),
        "references": {},
    },
    "DimDate": {
        "primary_key": ("date_key",),
        "cdc_col": "date",
        "depends_on": (),
        "references": {},
    },
    "FactStream": {
        "primary_key": ("stream_id",),
        "cdc_col": "stream_timestamp",
        "depends_on": ("DimUser", "DimTrack", "DimDate"),
        "references": {
            "user_id": "DimUser",
            "track_id": "DimTrack",
            "date_key": "DimDate",
        },
    },
}

DEFAULT_SOURCE_SCHEMA = "silver"
DEFAULT_TARGET_SCHEMA = "gold"


def lookup(table_name: str) -> dict[str, Any] | None:
    """Return the catalog entry for a table name, or None if undeclared."""
    return STAR_SCHEMA.get(table_name)
