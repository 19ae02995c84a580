# schemas.py
"""Form validation for invoice and onboarding submissions."""
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import (
    BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError,
    field_validator, model_validator,
)

_email_adapter = TypeAdapter(EmailStr)


def is_valid_email(value: str | None) -> bool:
    try:
        _email_adapter.validate_python(value or "")
    except ValidationError:
        return False
    return True


class InvoiceForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, allow_inf_nan=False)

    invoice_name: str = Field(min_length=1, max_length=200)
    invoice_number: str = Field(min_length=1, max_length=64)
    status: Literal["PENDING", "PAID"] = "PENDING"
    issue_date: date
    due_date: Optional[date] = None
    currency: str = Field(min_length=3, max_length=8)

    from_name: str = Field(min_length=1, max_length=200)
    from_email: EmailStr
    from_address: str = Field(min_length=1, max_length=500)

    client_name: str = Field(min_length=1, max_length=200)
    client_email: EmailStr
    client_address: str = Field(min_length=1, max_length=500)

    invoice_item_description: str = Field(min_length=1, max_length=500)
    invoice_item_quantity: float = Field(ge=0)
    invoice_item_rate: float = Field(ge=0)
    total: float = Field(ge=0)
    note: Optional[str] = None

    @field_validator("due_date", "note", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("from_email", "client_email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def _due_after_issue(self):
        if self.due_date is not None and self.due_date < self.issue_date:
            raise ValueError("Due date cannot be before the invoice date")
        return self


class OnboardingForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=2, max_length=120)
    last_name: str = Field(min_length=2, max_length=120)
    address: str = Field(min_length=2, max_length=500)


def field_errors(exc: ValidationError) -> dict[str, str]:
    """Flatten pydantic errors to {field: first message}. Model-level errors go under "form"."""
    out: dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        key = str(loc[0]) if loc else "form"
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.setdefault(key, msg)
    return out


def parse_form(model: type[BaseModel], form) -> tuple[Optional[BaseModel], dict[str, str]]:
    """Validate a submitted form. Returns (model, {}) or (None, errors)."""
    data = {name: form.get(name) for name in model.model_fields if form.get(name) is not None}
    try:
        return model.model_validate(data), {}
    except ValidationError as exc:
        return None, field_errors(exc)
