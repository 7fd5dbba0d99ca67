"""Form field kinds and submission validation.

Beginner terms used in this file:
- FieldSpec: one input a step asks for (text box, dropdown, checkbox, ...).
- Tagged union: the `type` attribute decides which field class is used when
  a template is parsed, so each kind carries only the attributes it needs.
- Blank value: `None` or a whitespace-only string. Blank values are treated as
  "not provided" and are never stored.
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from task_approvals.errors import SubmissionValidationError

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_DECIMAL_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


class _FieldBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(min_length=1)
    label: str = ""
    required: bool = False

    def is_blank(self, value: Any) -> bool:
        return value is None or (isinstance(value, str) and not value.strip())

    def coerce(self, value: Any) -> Any:
        """Return the normalised value or raise ValueError with a short reason."""
        raise NotImplementedError

    def satisfies_required(self, value: Any) -> bool:
        return True


class _StringField(_FieldBase):
    max_length: int | None = Field(default=None, ge=1)

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("expected a string")
        if self.max_length is not None and len(value) > self.max_length:
            raise ValueError(f"must be at most {self.max_length} characters")
        return value


class TextField(_StringField):
    type: Literal["text"] = "text"


class TextAreaField(_StringField):
    type: Literal["textarea"] = "textarea"


class NumberField(_FieldBase):
    type: Literal["number"] = "number"
    min_value: float | None = None
    max_value: float | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> NumberField:
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError("min_value must not exceed max_value")
        return self

    def coerce(self, value: Any) -> int | float:
        # bool is an int subclass; a checkbox value is never a number.
        if isinstance(value, bool):
            raise ValueError("expected a number")
        if isinstance(value, (int, float)):
            number: int | float = value
        elif isinstance(value, str):
            number = _parse_number(value.strip())
        else:
            raise ValueError("expected a number")
        if isinstance(number, float) and not math.isfinite(number):
            raise ValueError("expected a finite number")
        if self.min_value is not None and number < self.min_value:
            raise ValueError(f"must be >= {self.min_value:g}")
        if self.max_value is not None and number > self.max_value:
            raise ValueError(f"must be <= {self.max_value:g}")
        return number


class DateField(_FieldBase):
    type: Literal["date"] = "date"

    def coerce(self, value: Any) -> str:
        text = value.strip() if isinstance(value, str) else ""
        if not _ISO_DATE_RE.fullmatch(text):
            raise ValueError("expected an ISO date string (YYYY-MM-DD)")
        try:
            parsed = date.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("expected an ISO date string (YYYY-MM-DD)") from exc
        return parsed.isoformat()


class SelectField(_FieldBase):
    type: Literal["select"] = "select"
    options: list[str] = Field(min_length=1)

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str) or value not in self.options:
            raise ValueError(f"must be one of: {', '.join(self.options)}")
        return value


class CheckboxField(_FieldBase):
    type: Literal["checkbox"] = "checkbox"

    def coerce(self, value: Any) -> bool:
        if not isinstance(value, bool):
            raise ValueError("expected true or false")
        return value

    def satisfies_required(self, value: Any) -> bool:
        # A required checkbox is a confirmation: it must be ticked.
        return value is True


FieldSpec = Annotated[
    Union[TextField, TextAreaField, NumberField, DateField, SelectField, CheckboxField],
    Field(discriminator="type"),
]


def validate_submission(
    step_name: str,
    fields: list[FieldSpec],
    data: dict[str, Any],
    *,
    require_complete: bool = True,
) -> dict[str, Any]:
    """Check submitted form data against a step's fields.

    Returns the normalised form data (blank values dropped). Raises
    SubmissionValidationError listing every problem found, so a client can
    highlight all offending inputs at once.
    """
    by_key = {field.key: field for field in fields}
    issues: list[dict[str, Any]] = []

    for key in data:
        if key not in by_key:
            issues.append({"key": key, "message": "unknown field"})

    cleaned: dict[str, Any] = {}
    for field in fields:
        value = data.get(field.key)
        if field.is_blank(value):
            if field.required and require_complete:
                issues.append({"key": field.key, "message": "field is required"})
            continue
        try:
            normalised = field.coerce(value)
        except ValueError as exc:
            issues.append({"key": field.key, "message": str(exc)})
            continue
        if field.required and require_complete and not field.satisfies_required(normalised):
            issues.append({"key": field.key, "message": "must be checked"})
            continue
        cleaned[field.key] = normalised

    if issues:
        raise SubmissionValidationError(
            f"Submission does not match the form of step '{step_name}'",
            issues=issues,
        )
    return cleaned


def _parse_number(text: str) -> int | float:
    # Plain decimal notation only: no digit separators, no non-ASCII digits.
    if _INTEGER_RE.fullmatch(text):
        return int(text)
    if _DECIMAL_RE.fullmatch(text):
        return float(text)
    raise ValueError("expected a number")
