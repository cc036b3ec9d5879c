"""Normalization of template-form submissions into canonical field names.

Form builders emit keys such as ``screen_0_Vehicle_Number_0``; the label
inside is what identifies the field.
"""

import re
from typing import Mapping, Optional

from supportdesk.services.field_registry import fields_for

_SCREEN_PREFIX = re.compile(r"^screen_\d+_", re.IGNORECASE)
_TRAILING_INDEX = re.compile(r"_\d+$")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Normalized label -> canonical field. Longer phrases are matched first.
SEMANTIC_LABELS: dict[str, str] = {
    "vehicle number": "vehicle_number",
    "vehicle no": "vehicle_number",
    "vehicle": "vehicle_number",
    "driver number": "driver_number",
    "driver no": "driver_number",
    "driver": "driver_number",
    "availability date": "availability_date",
    "availability time": "availability_time",
    "date": "availability_date",
    "time": "availability_time",
    "upi id": "upi_id",
    "upi": "upi_id",
    "amount": "amount",
    "quantity": "quantity",
    "litres": "quantity",
    "location": "location",
    "address": "location",
    "comments": "comment",
    "comment": "comment",
    "description": "comment",
    "remarks": "comment",
    "fuel type": "fuel_type",
}

_BY_LENGTH = sorted(SEMANTIC_LABELS.items(), key=lambda item: len(item[0]), reverse=True)

# Provider bookkeeping keys that never carry an answer.
IGNORED_KEYS = frozenset({"flow_token", "flow_id", "screen", "version"})


def normalize_label(key: str) -> str:
    label = _SCREEN_PREFIX.sub("", key.strip())
    label = _TRAILING_INDEX.sub("", label)
    label = label.replace("_", " ")
    label = _PUNCTUATION.sub(" ", label.lower())
    return _WHITESPACE.sub(" ", label).strip()


def canonical_field(key: str) -> Optional[str]:
    label = normalize_label(key)
    if not label:
        return None
    if label in SEMANTIC_LABELS:
        return SEMANTIC_LABELS[label]
    for phrase, name in _BY_LENGTH:
        if re.search(rf"\b{re.escape(phrase)}\b", label):
            return name
    return None


def map_template_fields(
    category: str, raw_fields: Mapping[str, object], fuel_type: Optional[str] = None
) -> dict[str, object]:
    """Map raw form keys onto the category's fields; unknown keys are dropped.

    When two keys resolve to the same field the first non-empty value wins.
    """
    allowed = {spec.name for spec in fields_for(category, fuel_type)}
    if category == "fuel_request":
        allowed.add("fuel_type")
    mapped: dict[str, object] = {}
    for key, value in raw_fields.items():
        if key in IGNORED_KEYS:
            continue
        name = canonical_field(key)
        if name is None or name not in allowed:
            continue
        if isinstance(value, str):
            value = value.strip()
        if name in mapped and mapped[name] not in ("", None):
            continue
        mapped[name] = value
    return mapped
