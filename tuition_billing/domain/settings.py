"""Typed system setting definitions, parsing and validation"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from tuition_billing.domain.exceptions import SettingValidationError, UnknownSettingError

PENALTY_RATE = "installment_penalty_rate"
PENALTY_GRACE_DAYS = "installment_penalty_grace_days"
FINAL_DROPOFF_DAYS = "installment_final_dropoff_days"


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    type: str  # int | number | boolean | json | string
    category: Optional[str]
    description: Optional[str]
    default: Any
    min: Optional[float] = None
    max: Optional[float] = None


SETTINGS_DEFINITIONS: Dict[str, SettingDefinition] = {
    PENALTY_RATE: SettingDefinition(
        key=PENALTY_RATE,
        type="number",
        category="billing",
        description="Installment late payment penalty rate (decimal; 0.10 = 10%).",
        default=0.1,
        min=0,
        max=1,
    ),
    PENALTY_GRACE_DAYS: SettingDefinition(
        key=PENALTY_GRACE_DAYS,
        type="int",
        category="billing",
        description="Number of grace days after due_date before applying installment late penalty.",
        default=0,
        min=0,
        max=365,
    ),
    FINAL_DROPOFF_DAYS: SettingDefinition(
        key=FINAL_DROPOFF_DAYS,
        type="int",
        category="billing",
        description="Number of days after due_date before auto-removing student for installment delinquency.",
        default=30,
        min=0,
        max=365,
    ),
}

SETTINGS_KEYS = tuple(SETTINGS_DEFINITIONS)


@dataclass
class NormalizedSetting:
    """Validated setting ready to be stored"""

    key: str
    value: Any
    stored_value: str
    type: str
    category: Optional[str]
    description: Optional[str]


def get_definition(key: str) -> SettingDefinition:
    definition = SETTINGS_DEFINITIONS.get(key)
    if definition is None:
        raise UnknownSettingError(f"Unknown setting key: {key}")
    return definition


def keys_for_category(category: Optional[str]) -> list[str]:
    if not category:
        return list(SETTINGS_KEYS)
    return [key for key, d in SETTINGS_DEFINITIONS.items() if d.category == category]


def parse_by_type(raw_value: Any, type_: str, fallback: Any) -> Any:
    """
    Parse a stored or submitted value by its declared type.

    Unparseable values fall back to the supplied default.
    """
    if raw_value is None:
        return fallback

    if type_ == "int":
        try:
            return int(str(raw_value).strip())
        except ValueError:
            # "2.5" is a number, not an int; keep it so validation can reject it
            try:
                return float(str(raw_value).strip())
            except ValueError:
                return fallback

    if type_ == "number":
        try:
            return float(str(raw_value).strip())
        except ValueError:
            return fallback

    if type_ == "boolean":
        value = str(raw_value).strip().lower()
        if value in ("true", "1"):
            return True
        if value in ("false", "0"):
            return False
        return fallback

    if type_ == "json":
        if not isinstance(raw_value, str):
            return raw_value
        try:
            return json.loads(raw_value)
        except ValueError:
            return fallback

    return str(raw_value)


def validate_and_normalize(key: str, input_value: Any) -> NormalizedSetting:
    """
    Validate a submitted setting value.

    Raises:
        UnknownSettingError: key has no definition
        SettingValidationError: wrong type or outside [min, max]
    """
    definition = get_definition(key)

    if isinstance(input_value, bool) and definition.type in ("int", "number"):
        raise SettingValidationError(f"{key} must be a valid {definition.type}")

    parsed = parse_by_type(input_value, definition.type, None)
    if parsed is None:
        raise SettingValidationError(f"{key} must be a valid {definition.type}")

    if definition.type in ("int", "number"):
        if parsed != parsed or parsed in (float("inf"), float("-inf")):
            raise SettingValidationError(f"{key} must be a valid {definition.type}")
        if definition.type == "int":
            if isinstance(parsed, float) and not parsed.is_integer():
                raise SettingValidationError(f"{key} must be an integer")
            parsed = int(parsed)
        if definition.min is not None and parsed < definition.min:
            raise SettingValidationError(f"{key} must be >= {definition.min:g}")
        if definition.max is not None and parsed > definition.max:
            raise SettingValidationError(f"{key} must be <= {definition.max:g}")

    if definition.type == "json":
        stored_value = json.dumps(parsed)
    elif definition.type == "boolean":
        stored_value = "true" if parsed else "false"
    else:
        stored_value = str(parsed)

    return NormalizedSetting(
        key=key,
        value=parsed,
        stored_value=stored_value,
        type=definition.type,
        category=definition.category,
        description=definition.description,
    )
