"""
Input validation utilities for table configuration.

Schema, table and column names end up composed into SQL, so they are held
to a strict identifier grammar before anything reaches the database.
"""

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')

_RESERVED_KEYWORDS = {
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "table", "database", "index", "view", "user", "grant", "revoke"
}


def sanitize_sql_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Sanitize an SQL identifier (schema, table or column name).

    Args:
        identifier: The identifier to sanitize
        field_name: Name of the field (for error messages)

    Returns:
        The validated identifier (stripped of whitespace)

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> sanitize_sql_identifier("DimUser")
        'DimUser'
        >>> sanitize_sql_identifier("stream_timestamp")
        'stream_timestamp'
        >>> sanitize_sql_identifier("table; DROP TABLE users;")  # doctest: +SKIP
        ValidationError: identifier contains invalid characters
    """
    if not identifier or not isinstance(identifier, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    identifier = identifier.strip()

    if not _IDENTIFIER_PATTERN.match(identifier):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "SQL identifiers must start with a letter or underscore and contain only "
            "alphanumeric characters and underscores."
        )

    if len(identifier) > 63:  # PostgreSQL limit
        raise ValidationError(f"{field_name} exceeds PostgreSQL maximum length of 63 characters")

    if identifier.lower() in _RESERVED_KEYWORDS:
        raise ValidationError(
            f"{field_name} '{identifier}' is a reserved SQL keyword. "
            "Please use a different name."
        )

    return identifier


def validate_positive_int(value: int, field_name: str = "value", max_value: int | None = None) -> int:
    """
    Validate a positive integer option (worker counts, batch sizes).

    Raises:
        ValidationError: If validation fails
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {type(value).__name__}")

    if value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {value}")

    if max_value is not None and value > max_value:
        raise ValidationError(f"{field_name} exceeds maximum of {max_value}")

    return value


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a configuration or state file path.

    Prevents path traversal and null bytes.

    Raises:
        ValidationError: If validation fails
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise ValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains null bytes")

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise ValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
