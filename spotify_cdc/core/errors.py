"""
Exception hierarchy for the incremental loader.

ConfigurationError aborts a cycle before any table runs. Everything that
goes wrong while a single table is being selected or merged is an
InfrastructureFailure and stays scoped to that table.
"""


class CDCLoaderError(Exception):
    """Base class for all loader errors."""
    pass


class ConfigurationError(CDCLoaderError):
    """Raised when table configuration is malformed or inconsistent."""

    def __init__(self, message: str, table_id: str | None = None):
        self.table_id = table_id
        self.message = message
        prefix = f"[{table_id}] " if table_id else ""
        super().__init__(f"{prefix}{message}")


class InfrastructureFailure(CDCLoaderError):
    """Raised when a select or merge step cannot complete (connectivity, timeouts)."""

    def __init__(self, table_id: str, message: str):
        self.table_id = table_id
        self.message = message
        super().__init__(f"[{table_id}] {message}")


class StepTimeout(InfrastructureFailure):
    """Raised when a table step runs past its deadline."""

    def __init__(self, table_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(table_id, f"step exceeded timeout of {timeout_seconds:.1f}s")


class WatermarkRegression(CDCLoaderError):
    """Describes an advance whose value is not strictly greater than the stored one."""

    def __init__(self, table_id: str, stored_value, new_value):
        self.table_id = table_id
        self.stored_value = stored_value
        self.new_value = new_value
        super().__init__(
            f"[{table_id}] refusing to move watermark from {stored_value!r} to {new_value!r}"
        )


class CycleInProgressError(CDCLoaderError):
    """Raised when a cycle for the same table set is already running."""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__(f"A load cycle is already running for table set: {lock_key}")
