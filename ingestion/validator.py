"""
Data validation module for the Meu Carrim ingestion pipeline.
Provides row-level validation with detailed error reporting.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Callable
from datetime import date, datetime

logger = logging.getLogger(__name__)


@dataclass
class ValidationError:
    """Represents a single validation error."""

    field: str
    value: Any
    message: str
    severity: str = "error"  # error, warning
    row_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "value": str(self.value)[:100],  # Truncate long values
            "message": self.message,
            "severity": self.severity,
            "row_index": self.row_index,
        }


@dataclass
class ValidationResult:
    """Container for validation results."""

    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)
    cleaned_data: Optional[Dict[str, Any]] = None

    def add_error(
        self,
        field: str,
        value: Any,
        message: str,
        row_index: Optional[int] = None
    ):
        """Add an error to the result."""
        self.errors.append(
            ValidationError(field, value, message, "error", row_index)
        )
        self.is_valid = False

    def add_warning(
        self,
        field: str,
        value: Any,
        message: str,
        row_index: Optional[int] = None
    ):
        """Add a warning to the result."""
        self.warnings.append(
            ValidationError(field, value, message, "warning", row_index)
        )

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class DataValidator:
    """
    Validator for grocery reference data and price observations.
    Supports custom validation rules per field.
    """

    # Accepted purchase date formats besides ISO 8601
    DATE_FORMATS = ("%d/%m/%Y", "%d/%m/%Y %H:%M", "%Y-%m-%d %H:%M")

    def __init__(self):
        self._custom_validators: Dict[str, List[Callable]] = {}

    def add_custom_validator(self, field: str, validator: Callable):
        """Add a custom validator function for a specific field."""
        if field not in self._custom_validators:
            self._custom_validators[field] = []
        self._custom_validators[field].append(validator)

    def validate_category(
        self,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ) -> ValidationResult:
        """Validate category data."""
        result = ValidationResult(is_valid=True, cleaned_data={})

        self._validate_optional_string(
            result, data, "id", max_length=36, row_index=row_index
        )
        self._validate_required_string(
            result, data, "name", max_length=255, row_index=row_index
        )
        self._validate_optional_string(
            result, data, "description", row_index=row_index
        )
        self._validate_optional_string(
            result, data, "color", max_length=20, row_index=row_index
        )
        self._validate_optional_string(
            result, data, "icon", max_length=20, row_index=row_index
        )

        self._apply_custom_validators(result, data, row_index)

        return result

    def validate_product(
        self,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ) -> ValidationResult:
        """Validate product data."""
        result = ValidationResult(is_valid=True, cleaned_data={})

        self._validate_optional_string(
            result, data, "id", max_length=36, row_index=row_index
        )
        self._validate_required_string(
            result, data, "name", max_length=255, row_index=row_index
        )
        self._validate_optional_string(
            result, data, "description", row_index=row_index
        )
        self._validate_optional_string(
            result, data, "image", max_length=500, row_index=row_index
        )
        self._validate_optional_string(
            result, data, "category_id", max_length=36, row_index=row_index
        )
        self._validate_optional_string(
            result, data, "category_name", max_length=255, row_index=row_index
        )

        self._apply_custom_validators(result, data, row_index)

        return result

    def validate_market(
        self,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ) -> ValidationResult:
        """Validate market data, including the coordinate pair."""
        result = ValidationResult(is_valid=True, cleaned_data={})

        self._validate_optional_string(
            result, data, "id", max_length=36, row_index=row_index
        )
        self._validate_required_string(
            result, data, "name", max_length=255, row_index=row_index
        )

        for text_field, max_length in (
            ("address", None),
            ("city", 255),
            ("state", 100),
            ("zip_code", 20),
        ):
            self._validate_optional_string(
                result, data, text_field, max_length=max_length, row_index=row_index
            )

        self._validate_latitude(result, data, "latitude", row_index=row_index)
        self._validate_longitude(result, data, "longitude", row_index=row_index)
        self._validate_coordinate_pair(result, data, row_index=row_index)

        self._apply_custom_validators(result, data, row_index)

        return result

    def validate_price_observation(
        self,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ) -> ValidationResult:
        """Validate a price observation (one recorded purchase)."""
        result = ValidationResult(is_valid=True, cleaned_data={})

        self._validate_optional_string(
            result, data, "id", max_length=36, row_index=row_index
        )
        self._validate_reference(
            result, data, "product_id", "product_name", row_index=row_index
        )
        self._validate_reference(
            result, data, "market_id", "market_name", row_index=row_index
        )
        self._validate_optional_string(
            result, data, "city", max_length=255, row_index=row_index
        )
        self._validate_price(result, data, "price", row_index=row_index)
        self._validate_datetime(result, data, "purchase_date", row_index=row_index)

        self._apply_custom_validators(result, data, row_index)

        return result

    # ==========================================================================
    # PRIVATE VALIDATION HELPERS
    # ==========================================================================

    def _validate_required_string(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        max_length: Optional[int] = None,
        row_index: Optional[int] = None
    ):
        """Validate a required string field."""
        value = data.get(field)

        if value is None or (isinstance(value, str) and not value.strip()):
            result.add_error(field, value, f"{field} is required", row_index)
            return

        if not isinstance(value, str):
            value = str(value)

        value = value.strip()

        if max_length and len(value) > max_length:
            result.add_error(
                field, value,
                f"{field} exceeds max length of {max_length} characters",
                row_index
            )
            return

        if result.cleaned_data is not None:
            result.cleaned_data[field] = value

    def _validate_optional_string(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        max_length: Optional[int] = None,
        row_index: Optional[int] = None
    ):
        """Validate an optional string field."""
        value = data.get(field)

        if value is None or (isinstance(value, str) and not value.strip()):
            if result.cleaned_data is not None:
                result.cleaned_data[field] = None
            return

        if not isinstance(value, str):
            value = str(value)

        value = value.strip()

        if max_length and len(value) > max_length:
            result.add_warning(
                field, value,
                f"{field} exceeds max length of {max_length}, will be truncated",
                row_index
            )
            value = value[:max_length]

        if result.cleaned_data is not None:
            result.cleaned_data[field] = value

    def _validate_reference(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        id_field: str,
        name_field: str,
        row_index: Optional[int] = None
    ):
        """A row must point at an entity by id or, failing that, by name."""
        has_id = data.get(id_field) not in (None, "")
        has_name = data.get(name_field) not in (None, "")

        if not has_id and not has_name:
            result.add_error(
                id_field, None,
                f"{id_field} or {name_field} is required",
                row_index
            )
            return

        self._validate_optional_string(
            result, data, id_field, max_length=36, row_index=row_index
        )
        self._validate_optional_string(
            result, data, name_field, max_length=255, row_index=row_index
        )

    def _validate_price(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        row_index: Optional[int] = None
    ):
        """Validate a required, strictly positive price. Accepts '4,99'."""
        value = data.get(field)

        if value is None or value == "":
            result.add_error(field, value, f"{field} is required", row_index)
            return

        if isinstance(value, bool):
            result.add_error(field, value, f"{field} must be a valid number", row_index)
            return

        if isinstance(value, str):
            value = value.strip().replace("R$", "").strip().replace(",", ".")

        try:
            num_value = float(value)
        except (ValueError, TypeError):
            result.add_error(
                field, data.get(field),
                f"{field} must be a valid number",
                row_index
            )
            return

        if not math.isfinite(num_value) or num_value <= 0:
            result.add_error(
                field, data.get(field),
                f"{field} must be greater than zero",
                row_index
            )
            return

        if result.cleaned_data is not None:
            result.cleaned_data[field] = num_value

    def _validate_datetime(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        required: bool = False,
        row_index: Optional[int] = None
    ):
        """Validate a date/datetime field given as an object or a string."""
        value = data.get(field)

        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                result.add_error(field, value, f"{field} is required", row_index)
            elif result.cleaned_data is not None:
                result.cleaned_data[field] = None
            return

        parsed = None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, str):
            text = value.strip()
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                for fmt in self.DATE_FORMATS:
                    try:
                        parsed = datetime.strptime(text, fmt)
                        break
                    except ValueError:
                        continue

        if parsed is None:
            result.add_error(
                field, value,
                f"{field} must be a valid date",
                row_index
            )
            return

        if parsed.tzinfo is not None:
            # Stored timestamps are naive local time
            parsed = parsed.astimezone().replace(tzinfo=None)

        if result.cleaned_data is not None:
            result.cleaned_data[field] = parsed

    def _validate_latitude(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        required: bool = False,
        row_index: Optional[int] = None
    ):
        """Validate a latitude value (-90 to 90)."""
        value = data.get(field)

        if value is None or value == "":
            if required:
                result.add_error(field, value, f"{field} is required", row_index)
            elif result.cleaned_data is not None:
                result.cleaned_data[field] = None
            return

        try:
            lat = float(value)
            if not math.isfinite(lat) or lat < -90 or lat > 90:
                result.add_error(
                    field, value,
                    f"{field} must be between -90 and 90",
                    row_index
                )
                return
            if result.cleaned_data is not None:
                result.cleaned_data[field] = lat
        except (ValueError, TypeError):
            result.add_error(
                field, value,
                f"{field} must be a valid latitude",
                row_index
            )

    def _validate_longitude(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        field: str,
        required: bool = False,
        row_index: Optional[int] = None
    ):
        """Validate a longitude value (-180 to 180)."""
        value = data.get(field)

        if value is None or value == "":
            if required:
                result.add_error(field, value, f"{field} is required", row_index)
            elif result.cleaned_data is not None:
                result.cleaned_data[field] = None
            return

        try:
            lon = float(value)
            if not math.isfinite(lon) or lon < -180 or lon > 180:
                result.add_error(
                    field, value,
                    f"{field} must be between -180 and 180",
                    row_index
                )
                return
            if result.cleaned_data is not None:
                result.cleaned_data[field] = lon
        except (ValueError, TypeError):
            result.add_error(
                field, value,
                f"{field} must be a valid longitude",
                row_index
            )

    def _validate_coordinate_pair(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ):
        """Latitude and longitude must be given together or not at all."""
        has_lat = data.get("latitude") not in (None, "")
        has_lon = data.get("longitude") not in (None, "")

        if has_lat != has_lon:
            missing = "longitude" if has_lat else "latitude"
            result.add_error(
                missing, None,
                "latitude and longitude must be provided together",
                row_index
            )

    def _apply_custom_validators(
        self,
        result: ValidationResult,
        data: Dict[str, Any],
        row_index: Optional[int] = None
    ):
        """Apply custom validators to the data."""
        for field, validators in self._custom_validators.items():
            if field in data:
                for validator in validators:
                    try:
                        error_msg = validator(data[field], data)
                        if error_msg:
                            result.add_error(field, data[field], error_msg, row_index)
                    except Exception as e:
                        logger.warning(
                            f"Custom validator for {field} raised exception: {e}"
                        )
