"""Raw XML record to catalog row mapping with type coercion."""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from mbs_catalog.core.exceptions import ItemTransformError

SHORT_DESCRIPTION_LENGTH = 255

DATE_FORMATS = ("%d.%m.%Y", "%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d", "%Y%m%d")

TRUE_VALUES = {"y", "yes", "true", "1"}

_ITEM_NUMBER_RE = re.compile(r"^\s*(\d+)")
_CENT = Decimal("0.01")


def first_value(record: dict[str, str], *keys: str) -> Optional[str]:
    """First non-empty value among tag aliases."""
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return None


def parse_item_number(value: Optional[str]) -> int:
    match = _ITEM_NUMBER_RE.match(value or "")
    if not match or int(match.group(1)) <= 0:
        raise ItemTransformError(f"Unparseable item number: {value!r}")
    return int(match.group(1))


def parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    cleaned = value.replace("$", "").replace(",", "").strip()
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number.quantize(_CENT)


def parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(Decimal(value.strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse the date layouts seen upstream; unknown layouts yield None."""
    if not value:
        return None
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def parse_bool(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in TRUE_VALUES


def derive_is_active(end_date: Optional[date], today: date) -> bool:
    """An item is active unless its end date has been reached."""
    return end_date is None or end_date > today


def transform_item(record: dict[str, str], today: date) -> dict[str, Any]:
    """Map a flattened XML record to ``mbs_items`` column values.

    Args:
        record: Tag to text mapping for one item
        today: Reference date for ``is_active``

    Raises:
        ItemTransformError: The record has no parseable item number
    """
    item_number = parse_item_number(first_value(record, "ItemNum", "ItemNumber"))
    description = first_value(record, "Descriptor", "Description") or ""
    end_date = parse_date(first_value(record, "ItemEndDate", "EndDate"))

    return {
        "item_number": item_number,
        "description": description,
        "short_description": description[:SHORT_DESCRIPTION_LENGTH] or None,
        "category": first_value(record, "Category"),
        "sub_category": first_value(record, "SubCategory"),
        "group_name": first_value(record, "Group", "GroupName"),
        "sub_group": first_value(record, "SubGroup"),
        "provider_type": first_value(record, "ProviderType"),
        "service_type": first_value(record, "ServiceType"),
        "schedule_fee": parse_decimal(first_value(record, "ScheduleFee")),
        "benefit_75": parse_decimal(first_value(record, "Benefit75")),
        "benefit_85": parse_decimal(first_value(record, "Benefit85")),
        "benefit_100": parse_decimal(first_value(record, "Benefit100")),
        "has_anaesthetic": parse_bool(first_value(record, "HasAnaesthetic", "Anaes")),
        "anaesthetic_basic_units": parse_int(first_value(record, "AnaestheticBasicUnits", "BasicUnits")),
        "derived_fee_description": first_value(record, "DerivedFee"),
        "start_date": parse_date(first_value(record, "ItemStartDate", "StartDate")),
        "end_date": end_date,
        "is_active": derive_is_active(end_date, today),
        "raw_xml_data": dict(record),
    }
