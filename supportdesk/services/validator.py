"""Field validation. Pure functions, no I/O."""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from supportdesk.services.field_registry import DATE, ENUM, INTEGER, NUMBER, TIME, FieldSpec

Value = Union[str, int, float]


@dataclass(frozen=True)
class FieldValidation:
    accepted: bool
    value: Optional[Value] = None
    reason: Optional[str] = None

    @staticmethod
    def accept(value: Value) -> "FieldValidation":
        return FieldValidation(accepted=True, value=value)

    @staticmethod
    def reject(reason: str) -> "FieldValidation":
        return FieldValidation(accepted=False, reason=reason)


Rule = Callable[[FieldSpec, str], FieldValidation]


def _check_required(spec: FieldSpec, raw: str) -> FieldValidation:
    if not raw:
        return FieldValidation.reject(f"{spec.label} is required")
    return FieldValidation.accept(raw)


def _check_max_length(spec: FieldSpec, raw: str) -> FieldValidation:
    if spec.max_length is not None and len(raw) > spec.max_length:
        return FieldValidation.reject(f"{spec.label} must be at most {spec.max_length} characters")
    return FieldValidation.accept(raw)


def _parse_number(spec: FieldSpec, raw: str) -> Optional[Union[int, float]]:
    cleaned = raw.replace(",", "").strip()
    try:
        if spec.type == INTEGER:
            return int(cleaned)
        number = float(cleaned)
    except ValueError:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number) if number.is_integer() else number


def _check_numeric(spec: FieldSpec, raw: str) -> FieldValidation:
    if spec.type not in (NUMBER, INTEGER):
        return FieldValidation.accept(raw)
    number = _parse_number(spec, raw)
    if number is None:
        kind = "a whole number" if spec.type == INTEGER else "a number"
        return FieldValidation.reject(f"{spec.label} must be {kind}")
    if spec.min_value is not None and number < spec.min_value:
        return FieldValidation.reject(f"{spec.label} must be at least {spec.min_value:g}")
    if spec.max_value is not None and number > spec.max_value:
        return FieldValidation.reject(f"{spec.label} must be at most {spec.max_value:g}")
    return FieldValidation.accept(number)


def _check_options(spec: FieldSpec, raw: str) -> FieldValidation:
    if spec.type != ENUM and not spec.options:
        return FieldValidation.accept(raw)
    value = raw.lower()
    if value not in spec.options:
        return FieldValidation.reject(f"{spec.label} must be one of: {', '.join(spec.options)}")
    return FieldValidation.accept(value)


_SHAPE_HINTS = {DATE: "DD/MM/YYYY", TIME: "HH:MM"}


def _check_pattern(spec: FieldSpec, raw: str) -> FieldValidation:
    if not spec.pattern:
        return FieldValidation.accept(raw)
    if not re.match(spec.pattern, raw):
        shape = _SHAPE_HINTS.get(spec.type, "the expected format")
        return FieldValidation.reject(f"{spec.label} must be in {shape} format")
    return FieldValidation.accept(raw)


RULES: tuple[Rule, ...] = (
    _check_required,
    _check_max_length,
    _check_numeric,
    _check_options,
    _check_pattern,
)


def validate(spec: FieldSpec, raw_value: object) -> FieldValidation:
    """Run the rules in order; the first failing rule decides the reason."""
    raw = "" if raw_value is None else str(raw_value).strip()
    if not raw and not spec.required:
        return FieldValidation.accept("")

    value: Value = raw
    for rule in RULES:
        outcome = rule(spec, raw)
        if not outcome.accepted:
            return outcome
        if outcome.value != raw:
            value = outcome.value
    return FieldValidation.accept(value)


def is_skip(raw_value: str) -> bool:
    return raw_value.strip().lower() in {"skip", "-", "none", "na", "n/a"}
