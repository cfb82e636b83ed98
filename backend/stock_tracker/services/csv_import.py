"""Brokerage CSV import: header mapping, row validation and ledger writes.

Brokerage exports disagree on column names, date formats and how they encode
direction. Headers are matched against a fixed alias table with fuzzy scoring,
then each row is parsed independently so one bad row never blocks the rest.
Accepted rows are written through :func:`create_transaction`, the same path as
manual entry, so ticker checks and the sell guard apply to imports too.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Mapping, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.config import get_settings
from stock_tracker.models import Transaction
from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.schemas.transactions import TransactionCreateRequest
from stock_tracker.services import ledger
from stock_tracker.services.errors import MissingFieldMappingsError, TooManyRowsError, ValidationError
from stock_tracker.services.transactions import create_transaction

logger = logging.getLogger(__name__)

FIELD_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "type": (
            "action",
            "type",
            "transaction type",
            "trade type",
            "buy/sell",
            "side",
            "order type",
            "transaction",
        ),
        "symbol": (
            "symbol",
            "ticker",
            "stock",
            "security",
            "instrument",
            "stock symbol",
            "ticker symbol",
            "code",
        ),
        "exchange": (
            "exchange",
            "listing exchange",
            "market",
            "listingexchange",
            "stock exchange",
        ),
        "transaction_date": (
            "date",
            "trade date",
            "transaction date",
            "settlement date",
            "exec date",
            "execution date",
            "activity date",
            "tradedate",
        ),
        "shares": (
            "shares",
            "quantity",
            "qty",
            "units",
            "amount",
            "volume",
            "share quantity",
        ),
        "price_per_share": (
            "price",
            "share price",
            "unit price",
            "execution price",
            "trade price",
            "cost per share",
            "price per share",
            "t. price",
        ),
        "notes": (
            "notes",
            "memo",
            "description",
            "comment",
            "remarks",
        ),
    }
)

REQUIRED_FIELDS = ("symbol", "transaction_date", "shares", "price_per_share")

EXCHANGE_SUFFIXES: Mapping[str, str] = MappingProxyType(
    {
        "LSE": ".L",
        "LSEETF": ".L",
        "LON": ".L",
        "SEHK": ".HK",
        "HKG": ".HK",
        "TSE": ".TO",
        "TSX": ".TO",
        "ASX": ".AX",
        "XETRA": ".DE",
        "FRA": ".F",
        "EPA": ".PA",
        "SIX": ".SW",
        "AMS": ".AS",
        "EBR": ".BR",
        "MIL": ".MI",
        "MCE": ".MC",
        "CSE": ".CO",
        "STO": ".ST",
        "OSE": ".OL",
        "SGX": ".SI",
        "TYO": ".T",
        "NASDAQ": "",
        "NYSE": "",
        "AMEX": "",
        "ARCA": "",
    }
)

TYPE_SYNONYMS: Mapping[str, str] = MappingProxyType(
    {
        "buy": "BUY",
        "b": "BUY",
        "purchase": "BUY",
        "bought": "BUY",
        "you bought": "BUY",
        "bot": "BUY",
        "sell": "SELL",
        "s": "SELL",
        "sale": "SELL",
        "sold": "SELL",
        "you sold": "SELL",
        "sld": "SELL",
    }
)

# Tried in order; ISO-8601 is the final fallback.
DATE_FORMATS: tuple[tuple[str, str], ...] = (
    ("M/d/yyyy", "%m/%d/%Y"),
    ("MM/dd/yyyy", "%m/%d/%Y"),
    ("yyyy-MM-dd", "%Y-%m-%d"),
    ("dd-MMM-yyyy", "%d-%b-%Y"),
    ("yyyyMMdd", "%Y%m%d"),
    ("M/d/yy", "%m/%d/%y"),
    ("MM/dd/yy", "%m/%d/%y"),
)

MIN_CONFIDENCE = 0.6
FUZZY_THRESHOLD = 0.7
MAX_SYMBOL_LENGTH = 15
MAX_NOTES_LENGTH = 500

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.]+$")
_SHARES_NOISE = re.compile(r"[,\s]")
_PRICE_NOISE = re.compile(r"[$€£¥,\s]")


class ImportRow(Protocol):
    row_number: int
    values: Mapping[str, str | None]


class ImportRequestLike(Protocol):
    rows: Sequence[ImportRow]
    field_mappings: Mapping[str, str]


@dataclass(frozen=True)
class RowError:
    row_number: int
    field: str | None
    message: str
    value: str | None = None


@dataclass
class PreviewRow:
    row_number: int
    type: str | None = None
    symbol: str | None = None
    transaction_date: date | None = None
    shares: Decimal | None = None
    price_per_share: Decimal | None = None
    notes: str | None = None
    errors: list[RowError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class MappingSuggestion:
    suggested_mappings: dict[str, str] = field(default_factory=dict)
    confidence_scores: dict[str, float] = field(default_factory=dict)
    unmapped_columns: list[str] = field(default_factory=list)


@dataclass
class ImportPreview:
    valid_rows: list[PreviewRow]
    error_rows: list[PreviewRow]
    total_rows: int

    @property
    def valid_count(self) -> int:
        return len(self.valid_rows)

    @property
    def error_count(self) -> int:
        return len(self.error_rows)


@dataclass
class ImportResult:
    imported_transactions: list[Transaction] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    skipped_count: int = 0

    @property
    def imported_count(self) -> int:
        return len(self.imported_transactions)


# Header matching


def levenshtein(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def match_confidence(header: str, alias: str) -> float:
    """Score a normalized header against one alias."""

    if not header:
        return 0.0
    if header == alias:
        return 1.0
    if alias in header or header in alias:
        return 0.9
    similarity = 1 - levenshtein(header, alias) / max(len(header), len(alias))
    return similarity if similarity > FUZZY_THRESHOLD else 0.0


def best_field_match(header: str) -> tuple[str | None, float]:
    normalized = header.strip().lower()
    best_field: str | None = None
    best_score = 0.0
    for field_name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            score = match_confidence(normalized, alias)
            if score > best_score:
                best_field, best_score = field_name, score
    return best_field, best_score


def suggest_mappings(headers: Sequence[str]) -> MappingSuggestion:
    """Map each header to at most one field, keeping the best header per field."""

    suggestion = MappingSuggestion()
    best_per_field: dict[str, tuple[str, float]] = {}
    for header in headers:
        field_name, score = best_field_match(header)
        if field_name is None or score < MIN_CONFIDENCE:
            suggestion.unmapped_columns.append(header)
            continue
        current = best_per_field.get(field_name)
        if current is not None and score <= current[1]:
            suggestion.unmapped_columns.append(header)
            continue
        if current is not None:
            previous_header = current[0]
            suggestion.suggested_mappings.pop(previous_header, None)
            suggestion.confidence_scores.pop(previous_header, None)
            suggestion.unmapped_columns.append(previous_header)
        best_per_field[field_name] = (header, score)
        suggestion.suggested_mappings[header] = field_name
        suggestion.confidence_scores[header] = score
    return suggestion


# Row parsing


def extract_mapped_values(values: Mapping[str, str | None], field_mappings: Mapping[str, str]) -> dict[str, str]:
    """Collect non-blank, trimmed cell values keyed by standard field."""

    mapped: dict[str, str] = {}
    for header, field_name in field_mappings.items():
        raw = values.get(header)
        if raw is None:
            continue
        value = str(raw).strip()
        if value:
            mapped[field_name] = value
    return mapped


def _parse_decimal(raw: str, noise: re.Pattern[str]) -> Decimal | None:
    try:
        value = Decimal(noise.sub("", raw))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def parse_shares(raw: str | None, row_number: int, errors: list[RowError]) -> Decimal | None:
    if raw is None:
        errors.append(RowError(row_number, "shares", "Shares is required"))
        return None
    shares = _parse_decimal(raw, _SHARES_NOISE)
    if shares is None:
        errors.append(RowError(row_number, "shares", "Invalid number format for shares", raw))
        return None
    if shares == 0:
        errors.append(RowError(row_number, "shares", "Shares cannot be zero", raw))
        return None
    return shares


def parse_type(raw: str, row_number: int, errors: list[RowError]) -> str | None:
    resolved = TYPE_SYNONYMS.get(raw.strip().lower())
    if resolved is None:
        errors.append(
            RowError(row_number, "type", "Invalid type. Must be BUY or SELL (or common variations)", raw)
        )
    return resolved


def parse_symbol(raw: str | None, exchange: str | None, row_number: int, errors: list[RowError]) -> str | None:
    if raw is None:
        errors.append(RowError(row_number, "symbol", "Symbol is required"))
        return None
    symbol = raw.strip().upper()
    if exchange and "." not in symbol:
        symbol += EXCHANGE_SUFFIXES.get(exchange.strip().upper(), "")
    if len(symbol) > MAX_SYMBOL_LENGTH or not _SYMBOL_PATTERN.match(symbol):
        errors.append(RowError(row_number, "symbol", "Invalid symbol format", raw))
        return None
    return symbol


def parse_date_value(raw: str) -> date | None:
    for _label, pattern in DATE_FORMATS:
        try:
            return datetime.strptime(raw, pattern).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        return None


def parse_date(raw: str | None, row_number: int, errors: list[RowError], today: date) -> date | None:
    if raw is None:
        errors.append(RowError(row_number, "transaction_date", "Date is required"))
        return None
    parsed = parse_date_value(raw.strip())
    if parsed is None:
        errors.append(
            RowError(
                row_number,
                "transaction_date",
                "Invalid date format. Expected formats: MM/DD/YYYY, YYYY-MM-DD, etc.",
                raw,
            )
        )
        return None
    if parsed > today:
        errors.append(RowError(row_number, "transaction_date", "Transaction date cannot be in the future", raw))
        return None
    return parsed


def parse_price(raw: str | None, row_number: int, errors: list[RowError]) -> Decimal | None:
    if raw is None:
        errors.append(RowError(row_number, "price_per_share", "Price per share is required"))
        return None
    price = _parse_decimal(raw, _PRICE_NOISE)
    if price is None:
        errors.append(RowError(row_number, "price_per_share", "Invalid number format for price", raw))
        return None
    if price <= 0:
        errors.append(RowError(row_number, "price_per_share", "Price per share must be greater than zero", raw))
        return None
    return price


def parse_row(row: ImportRow, field_mappings: Mapping[str, str], today: date) -> PreviewRow:
    """Validate one CSV row, collecting every field error found."""

    preview = PreviewRow(row_number=row.row_number)
    errors = preview.errors
    mapped = extract_mapped_values(row.values, field_mappings)

    shares = parse_shares(mapped.get("shares"), row.row_number, errors)
    type_value = mapped.get("type")
    if type_value is None:
        # Signed quantity exports encode direction in the sign.
        tx_type = "SELL" if shares is not None and shares < 0 else "BUY"
    else:
        tx_type = parse_type(type_value, row.row_number, errors)
    if shares is not None and shares < 0:
        if tx_type == "SELL":
            shares = abs(shares)
        elif tx_type == "BUY":
            errors.append(RowError(row.row_number, "shares", "Shares must be positive for BUY", mapped["shares"]))

    preview.type = tx_type
    preview.shares = shares
    preview.symbol = parse_symbol(mapped.get("symbol"), mapped.get("exchange"), row.row_number, errors)
    preview.transaction_date = parse_date(mapped.get("transaction_date"), row.row_number, errors, today)
    preview.price_per_share = parse_price(mapped.get("price_per_share"), row.row_number, errors)

    notes = mapped.get("notes")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        errors.append(
            RowError(row.row_number, "notes", f"Notes cannot exceed {MAX_NOTES_LENGTH} characters", notes[:50])
        )
    preview.notes = notes
    return preview


def check_request(request: ImportRequestLike, max_rows: int | None = None) -> None:
    """Reject oversized requests and missing mappings before any row is read."""

    limit = max_rows or get_settings().import_max_rows
    if len(request.rows) > limit:
        raise TooManyRowsError(len(request.rows), limit)
    mapped_fields = set(request.field_mappings.values())
    missing = [name for name in REQUIRED_FIELDS if name not in mapped_fields]
    if missing:
        raise MissingFieldMappingsError(missing)


def preview_import(
    request: ImportRequestLike,
    *,
    today: date | None = None,
    max_rows: int | None = None,
) -> ImportPreview:
    check_request(request, max_rows)
    today = today or ledger.local_today()

    valid_rows: list[PreviewRow] = []
    error_rows: list[PreviewRow] = []
    for row in request.rows:
        preview = parse_row(row, request.field_mappings, today)
        (valid_rows if preview.valid else error_rows).append(preview)
    return ImportPreview(valid_rows=valid_rows, error_rows=error_rows, total_rows=len(request.rows))


async def execute_import(
    request: ImportRequestLike,
    session: AsyncSession,
    market_data: MarketDataGateway,
    *,
    user_id: str,
    today: date | None = None,
    max_rows: int | None = None,
) -> ImportResult:
    """Write every valid row; failed rows are reported and skipped."""

    check_request(request, max_rows)
    today = today or ledger.local_today()
    logger.info("Importing %d rows for user %s", len(request.rows), user_id)

    result = ImportResult()
    for row in request.rows:
        preview = parse_row(row, request.field_mappings, today)
        if not preview.valid:
            result.errors.extend(preview.errors)
            result.skipped_count += 1
            continue

        payload = TransactionCreateRequest(
            type=preview.type,
            symbol=preview.symbol,
            transaction_date=preview.transaction_date,
            shares=preview.shares,
            price_per_share=preview.price_per_share,
            notes=preview.notes,
        )
        try:
            tx = await create_transaction(payload, session, market_data, user_id=user_id)
        except ValidationError as exc:
            await session.rollback()
            logger.warning("Rejected import row %d: %s", row.row_number, exc.message)
            value = str(exc.value) if exc.value is not None else None
            result.errors.append(RowError(row.row_number, exc.field or "symbol", exc.message, value))
            result.skipped_count += 1
        except Exception as exc:  # one failed row must not abort the batch
            await session.rollback()
            logger.exception("Error importing row %d", row.row_number)
            result.errors.append(RowError(row.row_number, None, f"Import failed: {exc}"))
            result.skipped_count += 1
        else:
            result.imported_transactions.append(tx)

    # Rollbacks for failed rows expire rows imported earlier in the batch.
    for tx in result.imported_transactions:
        await session.refresh(tx)

    logger.info(
        "Import completed for user %s: %d imported, %d skipped",
        user_id,
        result.imported_count,
        result.skipped_count,
    )
    return result


__all__ = [
    "DATE_FORMATS",
    "EXCHANGE_SUFFIXES",
    "FIELD_ALIASES",
    "ImportPreview",
    "ImportResult",
    "MappingSuggestion",
    "PreviewRow",
    "REQUIRED_FIELDS",
    "RowError",
    "TYPE_SYNONYMS",
    "check_request",
    "execute_import",
    "levenshtein",
    "match_confidence",
    "parse_row",
    "preview_import",
    "suggest_mappings",
]
