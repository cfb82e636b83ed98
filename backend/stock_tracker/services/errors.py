"""Error kinds raised by the ledger services."""

from __future__ import annotations

from typing import Any, Iterable


class LedgerError(Exception):
    """Base class for ledger service failures."""


class ValidationError(LedgerError, ValueError):
    """A field failed validation; carries the field name and rejected value."""

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value

    def as_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"message": self.message}
        if self.field is not None:
            detail["field"] = self.field
        if self.value is not None:
            detail["value"] = str(self.value)
        return detail


class MissingFieldMappingsError(ValidationError):
    def __init__(self, missing_fields: Iterable[str]) -> None:
        self.missing_fields = list(missing_fields)
        super().__init__(
            "Missing required field mappings: " + ", ".join(self.missing_fields),
            field="field_mappings",
        )

    def as_detail(self) -> dict[str, Any]:
        detail = super().as_detail()
        detail["missing_fields"] = self.missing_fields
        return detail


class TooManyRowsError(ValidationError):
    def __init__(self, row_count: int, limit: int) -> None:
        self.row_count = row_count
        self.limit = limit
        super().__init__(
            f"Import is limited to {limit} rows per request, received {row_count}",
            field="rows",
            value=row_count,
        )


class NotFoundError(LedgerError, LookupError):
    """The requested transaction or holding does not exist for the user."""


class HoldingConsistencyError(LedgerError, RuntimeError):
    """A holding row vanished after a uniqueness conflict reported it as present."""


__all__ = [
    "HoldingConsistencyError",
    "LedgerError",
    "MissingFieldMappingsError",
    "NotFoundError",
    "TooManyRowsError",
    "ValidationError",
]
