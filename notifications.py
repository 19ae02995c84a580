# notifications.py
"""
Templated transactional email through the Mailtrap send API.

Template variables are always flat strings: amounts and dates are formatted
here before dispatch, the email provider only substitutes them.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date

import requests

from models import Invoice

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "KES": "KES ",
    "CAD": "CA$",
    "AUD": "A$",
}


class NotificationError(RuntimeError):
    """The email provider refused the message or could not be reached."""


def format_currency(amount, currency: str | None) -> str:
    """$1,234.50 style; unknown codes are prefixed with the code itself."""
    code = (currency or "").strip().upper()
    try:
        value = float(amount or 0)
    except (TypeError, ValueError):
        value = 0.0
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} " if code else "")
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_long_date(d: date | None) -> str:
    if d is None:
        return ""
    return f"{d:%B} {d.day}, {d.year}"


def invoice_link(base_url: str, invoice_id: str) -> str:
    return f"{(base_url or '').rstrip('/')}/invoice/{invoice_id}"


def invoice_status_variables(inv: Invoice, base_url: str) -> dict[str, str]:
    """Variables for the invoice created / updated templates."""
    return {
        "clientName": inv.client_name or "",
        "invoiceNumber": inv.invoice_number or "",
        "invoiceDueDate": format_long_date(inv.due_date or inv.issue_date),
        "invoiceAmount": format_currency(inv.total, inv.currency),
        "invoiceLink": invoice_link(base_url, inv.id),
    }


def reminder_variables(inv: Invoice, company: Mapping[str, str]) -> dict[str, str]:
    """Variables for the payment reminder template."""
    return {
        "first_name": inv.client_name or "",
        "company_info_name": company.get("name") or inv.from_name or "",
        "company_info_address": company.get("address") or inv.from_address or "",
        "company_info_city": company.get("city") or "",
        "company_info_zip_code": company.get("zip_code") or "",
        "company_info_country": company.get("country") or "",
    }


def company_info(cfg: Mapping) -> dict[str, str]:
    return {
        "name": cfg.get("COMPANY_INFO_NAME", ""),
        "address": cfg.get("COMPANY_INFO_ADDRESS", ""),
        "city": cfg.get("COMPANY_INFO_CITY", ""),
        "zip_code": cfg.get("COMPANY_INFO_ZIP_CODE", ""),
        "country": cfg.get("COMPANY_INFO_COUNTRY", ""),
    }


class MailtrapNotifier:
    def __init__(self, api_token: str, api_url: str, from_email: str, from_name: str,
                 templates: Mapping[str, str] | None = None, timeout: float = 10.0):
        self.api_token = (api_token or "").strip()
        self.api_url = api_url
        self.sender = {"email": from_email, "name": from_name}
        self.templates = dict(templates or {})
        self.timeout = timeout
        self._session = requests.Session()

    @classmethod
    def from_config(cls, cfg: Mapping) -> "MailtrapNotifier":
        return cls(
            api_token=cfg.get("MAILTRAP_API_TOKEN", ""),
            api_url=cfg.get("MAILTRAP_API_URL", "https://send.api.mailtrap.io/api/send"),
            from_email=cfg.get("MAIL_FROM_EMAIL", ""),
            from_name=cfg.get("MAIL_FROM_NAME", ""),
            templates={
                "invoice_created": cfg.get("MAILTRAP_TEMPLATE_INVOICE_CREATED", ""),
                "invoice_updated": cfg.get("MAILTRAP_TEMPLATE_INVOICE_UPDATED", ""),
                "reminder": cfg.get("MAILTRAP_TEMPLATE_REMINDER", ""),
            },
        )

    def template_uuid(self, kind: str) -> str:
        return self.templates.get(kind, "")

    def send(self, template_uuid: str, to_email: str, variables: Mapping[str, str]) -> None:
        if not self.api_token or not template_uuid:
            logger.info("Mailtrap not configured; skipping email to %s", to_email)
            return

        payload = {
            "from": self.sender,
            "to": [{"email": to_email}],
            "template_uuid": template_uuid,
            "template_variables": dict(variables),
        }
        headers = {"Authorization": f"Bearer {self.api_token}"}
        try:
            response = self._session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Failed to send template %s to %s: %s", template_uuid, to_email, e)
            raise NotificationError(f"Email to {to_email} failed: {e}") from e

        logger.info("Email sent to %s (template %s)", to_email, template_uuid)

    def send_invoice_status(self, kind: str, inv: Invoice, base_url: str) -> None:
        self.send(self.template_uuid(kind), inv.client_email, invoice_status_variables(inv, base_url))

    def send_reminder(self, inv: Invoice, company: Mapping[str, str]) -> None:
        self.send(self.template_uuid("reminder"), inv.client_email, reminder_variables(inv, company))
