"""Static declaration of ticket categories and the fields each one collects."""

from dataclasses import dataclass, field
from typing import Mapping, Optional

TEXT = "text"
NUMBER = "number"
INTEGER = "integer"
DATE = "date"
TIME = "time"
ENUM = "enum"

FUEL_BY_AMOUNT = "amount"
FUEL_BY_QUANTITY = "quantity"

DATE_PATTERN = r"^\d{1,2}/\d{1,2}/\d{4}$"
TIME_PATTERN = r"^\d{1,2}:\d{2}$"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    type: str = TEXT
    required: bool = True
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    options: tuple[str, ...] = ()
    pattern: Optional[str] = None
    hint: Optional[str] = None

    @property
    def prompt(self) -> str:
        text = f"Please enter your {self.label}:"
        if self.hint:
            text = f"{text} ({self.hint})"
        if not self.required:
            text = f"{text}\nReply SKIP to leave it empty."
        return text


@dataclass(frozen=True)
class Category:
    key: str
    label: str
    description: str
    fields: tuple[FieldSpec, ...] = field(default_factory=tuple)


VEHICLE_NUMBER = FieldSpec("vehicle_number", "Vehicle Number", max_length=20)
DRIVER_NUMBER = FieldSpec("driver_number", "Driver Number", max_length=20)
LOCATION = FieldSpec("location", "Location", max_length=100)
AVAILABILITY_DATE = FieldSpec(
    "availability_date", "Availability Date", type=DATE, pattern=DATE_PATTERN, hint="DD/MM/YYYY"
)
AVAILABILITY_TIME = FieldSpec(
    "availability_time", "Availability Time", type=TIME, pattern=TIME_PATTERN, hint="HH:MM"
)
AMOUNT = FieldSpec(
    "amount", "Amount", type=NUMBER, min_value=1, max_value=99999, hint="numbers only, max 5 digits"
)
QUANTITY = FieldSpec("quantity", "Quantity", type=INTEGER, min_value=1, max_value=9999, hint="litres")
UPI_ID = FieldSpec("upi_id", "UPI ID", max_length=50)
COMMENT = FieldSpec("comment", "Comment", required=False, max_length=500)
DESCRIPTION = FieldSpec("comment", "Issue Description", max_length=500)

FUEL_TYPE = FieldSpec("fuel_type", "Fuel Request Type", type=ENUM, options=(FUEL_BY_AMOUNT, FUEL_BY_QUANTITY))

CATEGORIES: dict[str, Category] = {
    "lock_open": Category(
        "lock_open",
        "Unlock",
        "Vehicle lock needs to be opened",
        (VEHICLE_NUMBER, DRIVER_NUMBER, LOCATION, COMMENT),
    ),
    "lock_repair": Category(
        "lock_repair",
        "Unlock Repair",
        "Vehicle lock needs repair",
        (VEHICLE_NUMBER, DRIVER_NUMBER, LOCATION, AVAILABILITY_DATE, AVAILABILITY_TIME, COMMENT),
    ),
    "fund_request": Category(
        "fund_request",
        "Funding Request",
        "Request funds for the vehicle",
        (VEHICLE_NUMBER, DRIVER_NUMBER, AMOUNT, UPI_ID, COMMENT),
    ),
    "fuel_request": Category(
        "fuel_request",
        "Fuel Request",
        "Request fuel by amount or quantity",
    ),
    "other": Category("other", "Other", "Anything else", (DESCRIPTION,)),
}

CATEGORY_ORDER = ("lock_open", "lock_repair", "fund_request", "fuel_request", "other")

FUEL_FIELDS: dict[str, tuple[FieldSpec, ...]] = {
    FUEL_BY_AMOUNT: (VEHICLE_NUMBER, DRIVER_NUMBER, AMOUNT, UPI_ID, COMMENT),
    FUEL_BY_QUANTITY: (VEHICLE_NUMBER, DRIVER_NUMBER, QUANTITY, COMMENT),
}

FUEL_SUBTYPE_LABELS = {FUEL_BY_AMOUNT: "By Amount", FUEL_BY_QUANTITY: "By Quantity"}


def is_category(key: Optional[str]) -> bool:
    return bool(key) and key in CATEGORIES


def category_label(key: Optional[str]) -> str:
    category = CATEGORIES.get(key or "")
    return category.label if category else (key or "Unknown")


def fields_for(category: str, fuel_type: Optional[str] = None) -> list[FieldSpec]:
    """Ordered fields for a category. Fuel requests need a sub-flow to resolve."""
    if category == "fuel_request":
        return list(FUEL_FIELDS.get(fuel_type or "", ()))
    spec = CATEGORIES.get(category)
    if spec is None:
        raise KeyError(f"Unknown category: {category}")
    return list(spec.fields)


def required_fields(category: str, fuel_type: Optional[str] = None) -> list[FieldSpec]:
    return [f for f in fields_for(category, fuel_type) if f.required]


def bulk_field_order(category: str, fuel_type: Optional[str] = None) -> list[FieldSpec]:
    """Required fields first, then optional, each group in declaration order."""
    fields = fields_for(category, fuel_type)
    return [f for f in fields if f.required] + [f for f in fields if not f.required]


def next_missing_required_field(
    category: str, answers: Mapping[str, object], fuel_type: Optional[str] = None
) -> Optional[FieldSpec]:
    for spec in required_fields(category, fuel_type):
        if spec.name not in answers:
            return spec
    return None


def next_unanswered_field(
    category: str, answers: Mapping[str, object], fuel_type: Optional[str] = None
) -> Optional[FieldSpec]:
    """Like next_missing_required_field, then walks optional fields not yet answered or skipped."""
    for spec in bulk_field_order(category, fuel_type):
        if spec.name not in answers:
            return spec
    return None


def find_field(category: str, name: str, fuel_type: Optional[str] = None) -> Optional[FieldSpec]:
    for spec in fields_for(category, fuel_type):
        if spec.name == name:
            return spec
    return None
