"""
ERP API response normalizer.

Converts raw invoice / employee dicts from the ERP into clean field dicts
that map directly onto SQLModel columns. No DB or network access here:
the sync service handles salesperson resolution and persistence.

The ERP is inconsistent about field names and value types between
endpoints and API versions, so every field is described by an ordered
tuple of extractors. Each extractor returns a value or None; the first
non-None result wins, otherwise the field's default applies:

    invoice number   user_code → invoice_number → "INV-{id}"
    customer name    customer.name → customer.company_name → customer_name
                     → client_name → company_name → name → "Unknown Customer"
    currency         currency_iso_code → currency → "USD"
    invoice date     date → invoice_date → created_at → 2024-01-01

Money values arrive either as JSON strings ("125.50") or numbers; anything
unparseable leaves the field at zero rather than dropping the record.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from invoice_mirror.erp.errors import RecordParseError

Extractor = Callable[[Dict[str, Any]], Optional[Any]]

# Used when no date field parses. Deliberately not "now": an unknown invoice
# must not look like it was issued on the day of the sync.
FALLBACK_INVOICE_DATE = datetime(2024, 1, 1)

UNKNOWN_CUSTOMER = "Unknown Customer"
DEFAULT_CURRENCY = "USD"
DEFAULT_STATUS = "Active"
UNKNOWN_EMPLOYEE = "Unknown"

# invoice_status codes used by the ERP
STATUS_BY_CODE = {
    2: "Invoiced",
    3: "Cancelled",
}
UNKNOWN_STATUS = "Unknown"

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
)


# ── Primitive parsers ─────────────────────────────────────────────────────────

def _parse_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_int(value: Any) -> Optional[int]:
    # bool is an int subclass; the ERP never means True as 1 here
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ERP timestamp into a naive UTC datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        parsed = None
        for fmt in _DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ── Extractor builders ────────────────────────────────────────────────────────

def string_field(key: str) -> Extractor:
    return lambda raw: _parse_string(raw.get(key))


def nested_string_field(parent: str, key: str) -> Extractor:
    def extract(raw: Dict[str, Any]) -> Optional[str]:
        nested = raw.get(parent)
        if not isinstance(nested, dict):
            return None
        return _parse_string(nested.get(key))

    return extract


def int_field(key: str) -> Extractor:
    return lambda raw: _parse_int(raw.get(key))


def bool_field(key: str) -> Extractor:
    return lambda raw: _parse_bool(raw.get(key))


def decimal_field(key: str) -> Extractor:
    return lambda raw: _parse_decimal(raw.get(key))


def datetime_field(key: str) -> Extractor:
    return lambda raw: _parse_datetime(raw.get(key))


def first_value(raw: Dict[str, Any], extractors: Tuple[Extractor, ...], default: Any = None) -> Any:
    """Return the first non-None extractor result, or default."""
    for extract in extractors:
        value = extract(raw)
        if value is not None:
            return value
    return default


# ── Field tables ──────────────────────────────────────────────────────────────

INVOICE_NUMBER = (string_field("user_code"), string_field("invoice_number"))
CUSTOMER_NAME = (
    nested_string_field("customer", "name"),
    nested_string_field("customer", "company_name"),
    string_field("customer_name"),
    string_field("client_name"),
    string_field("company_name"),
    string_field("name"),
)
CURRENCY = (string_field("currency_iso_code"), string_field("currency"))
DESCRIPTION = (string_field("public_note"), string_field("description"))
INVOICE_DATE = (
    datetime_field("date"),
    datetime_field("invoice_date"),
    datetime_field("created_at"),
)
SOURCE_CREATED_AT = (datetime_field("created_at"),)

EMPLOYEE_FIRST_NAME = (string_field("first_name"), string_field("firstName"))
EMPLOYEE_LAST_NAME = (string_field("last_name"), string_field("lastName"))


def parse_record_id(raw: Dict[str, Any]) -> int:
    """Return the ERP id of a record, or raise RecordParseError."""
    if not isinstance(raw, dict):
        raise RecordParseError(f"Expected an object, got {type(raw).__name__}")
    record_id = _parse_int(raw.get("id"))
    if record_id is None:
        raise RecordParseError(
            "Record has no parseable 'id'. Keys present: " + str(list(raw.keys()))
        )
    return record_id


def derive_status(raw: Dict[str, Any]) -> str:
    """
    Map the ERP's numeric invoice_status onto our taxonomy.

    Older API versions only send a free-text `status`, which is used as-is.
    """
    code = _parse_int(raw.get("invoice_status"))
    if code is not None:
        return STATUS_BY_CODE.get(code, UNKNOWN_STATUS)
    return first_value(raw, (string_field("status"),), DEFAULT_STATUS)


def normalize_invoice(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an ERP invoice dict into an Invoice field dict.

    salesperson_name, synced_at and updated_at are not included; they depend
    on lookups and the sync clock, which belong to the caller.

    Raises:
        RecordParseError: if the record has no usable id.
    """
    invoice_id = parse_record_id(raw)

    invoice_date = first_value(raw, INVOICE_DATE, FALLBACK_INVOICE_DATE)
    employee_id = _parse_int(raw.get("employee_id"))

    return {
        "id": invoice_id,
        "invoice_number": first_value(raw, INVOICE_NUMBER, f"INV-{invoice_id}"),
        "customer_name": first_value(raw, CUSTOMER_NAME, UNKNOWN_CUSTOMER),
        "currency": first_value(raw, CURRENCY, DEFAULT_CURRENCY),
        "description": first_value(raw, DESCRIPTION),
        "total": first_value(raw, (decimal_field("total"),), Decimal("0")),
        "paid": first_value(raw, (decimal_field("paid"),), Decimal("0")),
        "unpaid": first_value(raw, (decimal_field("unpaid"),), Decimal("0")),
        "status": derive_status(raw),
        "invoice_status": _parse_int(raw.get("invoice_status")),
        "delivery_status": _parse_int(raw.get("delivery_status")),
        "employee_id": employee_id if employee_id and employee_id > 0 else None,
        "locked": first_value(raw, (bool_field("locked"),), False),
        "sent": first_value(raw, (bool_field("sent"),), False),
        "sent_at": first_value(raw, (datetime_field("sent_at"),)),
        "invoice_date": invoice_date,
        # First-seen time for new rows; the sync service swaps in the stored
        # value when the invoice already exists locally.
        "created_at": first_value(raw, SOURCE_CREATED_AT, invoice_date),
    }


def employee_full_name(raw: Dict[str, Any]) -> str:
    """Join first_name and last_name; "Unknown" when both are blank."""
    first = raw.get("first_name") if isinstance(raw.get("first_name"), str) else ""
    last = raw.get("last_name") if isinstance(raw.get("last_name"), str) else ""
    full = f"{first} {last}".strip()
    return full or UNKNOWN_EMPLOYEE


def normalize_employee(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an ERP employee dict into an Employee field dict.

    Raises:
        RecordParseError: if the record has no usable id.
    """
    employee_id = parse_record_id(raw)
    status = first_value(raw, (string_field("status"),), "")
    return {
        "id": employee_id,
        "first_name": first_value(raw, EMPLOYEE_FIRST_NAME, "Unknown"),
        "last_name": first_value(raw, EMPLOYEE_LAST_NAME, "Employee"),
        "email": first_value(raw, (string_field("email"),)),
        "phone": first_value(raw, (string_field("phone"),)),
        "department": first_value(raw, (string_field("department"),)),
        "position": first_value(raw, (string_field("position"),)),
        "is_active": status.lower() != "inactive",
    }
