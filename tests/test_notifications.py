"""Unit tests for email formatting and the Mailtrap client."""

from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from models import Invoice
from notifications import (
    MailtrapNotifier,
    NotificationError,
    company_info,
    format_currency,
    format_long_date,
    invoice_status_variables,
    reminder_variables,
)


@pytest.fixture
def invoice() -> Invoice:
    return Invoice(
        id="0b7a4c2e-0000-4000-8000-000000000001",
        invoice_number="INV-001",
        client_name="Acme",
        client_email="a@acme.com",
        from_name="Ada Lovelace",
        from_address="12 Analytical Row, London",
        issue_date=date(2024, 1, 10),
        due_date=date(2024, 1, 24),
        currency="USD",
        total=1500.0,
    )


@pytest.fixture
def notifier() -> MailtrapNotifier:
    return MailtrapNotifier(
        api_token="token-123",
        api_url="https://send.api.mailtrap.io/api/send",
        from_email="hello@example.com",
        from_name="Invoices",
        templates={"invoice_created": "tpl-created", "reminder": "tpl-reminder"},
    )


class TestFormatting:
    @pytest.mark.parametrize(
        ("amount", "currency", "expected"),
        [
            (500, "USD", "$500.00"),
            (1234.5, "EUR", "€1,234.50"),
            (0, "gbp", "£0.00"),
            (10, "XYZ", "XYZ 10.00"),
            (None, "", "0.00"),
        ],
    )
    def test_format_currency(self, amount, currency, expected) -> None:
        assert format_currency(amount, currency) == expected

    def test_long_date_has_no_zero_padding(self) -> None:
        assert format_long_date(date(2024, 1, 5)) == "January 5, 2024"
        assert format_long_date(None) == ""

    def test_status_variables_are_preformatted(self, invoice: Invoice) -> None:
        variables = invoice_status_variables(invoice, "https://invoices.example.test/")

        assert variables == {
            "clientName": "Acme",
            "invoiceNumber": "INV-001",
            "invoiceDueDate": "January 24, 2024",
            "invoiceAmount": "$1,500.00",
            "invoiceLink": f"https://invoices.example.test/invoice/{invoice.id}",
        }

    def test_status_variables_fall_back_to_issue_date(self, invoice: Invoice) -> None:
        invoice.due_date = None

        assert invoice_status_variables(invoice, "http://x")["invoiceDueDate"] == "January 10, 2024"

    def test_reminder_variables_use_company_config(self, invoice: Invoice) -> None:
        company = company_info({"COMPANY_INFO_NAME": "Sly Gems", "COMPANY_INFO_CITY": "Nairobi"})

        variables = reminder_variables(invoice, company)

        assert variables["first_name"] == "Acme"
        assert variables["company_info_name"] == "Sly Gems"
        assert variables["company_info_city"] == "Nairobi"
        assert variables["company_info_address"] == "12 Analytical Row, London"


class TestMailtrapNotifier:
    def test_posts_template_payload(self, notifier: MailtrapNotifier, invoice: Invoice) -> None:
        response = MagicMock()
        response.raise_for_status.return_value = None

        with patch.object(notifier._session, "post", return_value=response) as mock_post:
            notifier.send_invoice_status("invoice_created", invoice, "https://invoices.example.test")

        mock_post.assert_called_once()
        kwargs = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0] == "https://send.api.mailtrap.io/api/send"
        assert kwargs["headers"] == {"Authorization": "Bearer token-123"}
        payload = kwargs["json"]
        assert payload["from"] == {"email": "hello@example.com", "name": "Invoices"}
        assert payload["to"] == [{"email": "a@acme.com"}]
        assert payload["template_uuid"] == "tpl-created"
        assert payload["template_variables"]["invoiceAmount"] == "$1,500.00"

    def test_http_error_raises_notification_error(self, notifier: MailtrapNotifier, invoice: Invoice) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")

        with patch.object(notifier._session, "post", return_value=response):
            with pytest.raises(NotificationError):
                notifier.send_reminder(invoice, company_info({}))

    def test_connection_error_raises_notification_error(self, notifier: MailtrapNotifier,
                                                        invoice: Invoice) -> None:
        with patch.object(notifier._session, "post", side_effect=requests.ConnectionError("down")):
            with pytest.raises(NotificationError):
                notifier.send_reminder(invoice, company_info({}))

    def test_unconfigured_notifier_skips(self, invoice: Invoice) -> None:
        quiet = MailtrapNotifier(api_token="", api_url="https://example.test", from_email="", from_name="")

        with patch.object(quiet._session, "post") as mock_post:
            quiet.send_reminder(invoice, company_info({}))

        mock_post.assert_not_called()

    def test_missing_template_skips(self, notifier: MailtrapNotifier, invoice: Invoice) -> None:
        with patch.object(notifier._session, "post") as mock_post:
            notifier.send_invoice_status("invoice_updated", invoice, "http://x")

        mock_post.assert_not_called()

    def test_from_config(self) -> None:
        built = MailtrapNotifier.from_config(
            {"MAILTRAP_API_TOKEN": "abc", "MAILTRAP_TEMPLATE_REMINDER": "tpl-r", "MAIL_FROM_EMAIL": "a@b.com"}
        )

        assert built.api_token == "abc"
        assert built.template_uuid("reminder") == "tpl-r"
        assert built.sender["email"] == "a@b.com"
