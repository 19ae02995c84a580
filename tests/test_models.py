"""Tests for the invoice store helpers."""

from datetime import date

import pytest

from conftest import SAMPLE_FIELDS, add_user
from models import (
    InvoiceNotFound,
    create_invoice,
    delete_invoice,
    get_invoice,
    list_invoices,
    mark_invoice_paid,
    update_invoice,
)


@pytest.fixture
def owner(app) -> int:
    return add_user(app, "owner")


def test_create_returns_persisted_invoice_with_id(db_session, owner: int) -> None:
    inv = create_invoice(db_session, owner, SAMPLE_FIELDS)
    db_session.commit()

    assert inv.id and len(inv.id) == 36
    assert get_invoice(db_session, inv.id).invoice_number == "INV-001"


def test_owner_scope(db_session, owner: int, app) -> None:
    stranger = add_user(app, "stranger")
    inv = create_invoice(db_session, owner, SAMPLE_FIELDS)
    db_session.commit()

    with pytest.raises(InvoiceNotFound):
        get_invoice(db_session, inv.id, user_id=stranger)
    with pytest.raises(InvoiceNotFound):
        delete_invoice(db_session, inv.id, stranger)
    assert get_invoice(db_session, inv.id, user_id=owner).id == inv.id


def test_update_only_touches_known_fields(db_session, owner: int) -> None:
    inv = create_invoice(db_session, owner, SAMPLE_FIELDS)
    db_session.commit()

    update_invoice(db_session, inv.id, owner, {"total": 42.0, "user_id": 999})
    db_session.commit()

    refreshed = get_invoice(db_session, inv.id)
    assert refreshed.total == 42.0
    assert refreshed.user_id == owner


def test_mark_paid_and_delete(db_session, owner: int) -> None:
    inv = create_invoice(db_session, owner, SAMPLE_FIELDS)
    db_session.commit()

    mark_invoice_paid(db_session, inv.id, owner)
    db_session.commit()
    assert get_invoice(db_session, inv.id).status == "PAID"

    delete_invoice(db_session, inv.id, owner)
    db_session.commit()
    assert list_invoices(db_session, owner) == []


def test_overdue(db_session, owner: int) -> None:
    inv = create_invoice(db_session, owner, SAMPLE_FIELDS)

    assert inv.is_overdue(date(2024, 2, 1))
    assert not inv.is_overdue(date(2024, 1, 24))
    inv.status = "PAID"
    assert not inv.is_overdue(date(2024, 2, 1))


def test_item_amount(db_session, owner: int) -> None:
    inv = create_invoice(db_session, owner, dict(SAMPLE_FIELDS, invoice_item_quantity=3, invoice_item_rate=19.99))

    assert inv.item_amount() == 59.97
