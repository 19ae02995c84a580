# models.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    create_engine,
    String,
    Integer,
    Float,
    Date,
    DateTime,
    Text,
    ForeignKey,
    select,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)

INVOICE_STATUSES = ("PENDING", "PAID")


# -----------------------------
# SQLAlchemy base
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Tables
# -----------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Filled in by the onboarding step
    first_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    invoices: Mapped[list["Invoice"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Invoice.created_at.desc()",
    )

    def is_onboarded(self) -> bool:
        return bool(self.first_name and self.last_name and self.address)


class Invoice(Base):
    """
    One invoice with a single line item stored as scalar columns.
    The id is a uuid string so links in emails are not guessable.
    """
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    invoice_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    issue_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    from_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    from_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    from_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    client_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    client_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    client_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    invoice_item_description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    invoice_item_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    invoice_item_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped["User"] = relationship(back_populates="invoices")

    def item_amount(self) -> float:
        return round((self.invoice_item_quantity or 0.0) * (self.invoice_item_rate or 0.0), 2)

    def is_overdue(self, today: date) -> bool:
        return self.status != "PAID" and self.due_date is not None and self.due_date < today

    def to_api_dict(self) -> dict:
        """Public read shape: the invoice fields only, camelCase keys."""
        return {
            "invoiceName": self.invoice_name,
            "invoiceNumber": self.invoice_number,
            "currency": self.currency,
            "fromName": self.from_name,
            "fromAddress": self.from_address,
            "fromEmail": self.from_email,
            "date": self.issue_date.isoformat() if self.issue_date else None,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "invoiceItemDescription": self.invoice_item_description,
            "invoiceItemQuantity": self.invoice_item_quantity,
            "invoiceItemRate": self.invoice_item_rate,
            "total": self.total,
            "note": self.note,
            "clientAddress": self.client_address,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
        }


# Columns a submitted invoice form may write
INVOICE_FIELDS = (
    "invoice_name",
    "invoice_number",
    "status",
    "issue_date",
    "due_date",
    "currency",
    "from_name",
    "from_email",
    "from_address",
    "client_name",
    "client_email",
    "client_address",
    "invoice_item_description",
    "invoice_item_quantity",
    "invoice_item_rate",
    "total",
    "note",
)


# -----------------------------
# Engine / Session factory
# -----------------------------
def make_engine(db_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine.
    Note: SQLite path must exist (instance/ folder). db_init.py creates it.
    """
    return create_engine(db_url, echo=echo, future=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# -----------------------------
# Invoice store
# -----------------------------
class InvoiceNotFound(LookupError):
    """No invoice with that id (or not owned by the given user)."""

    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice not found: id={invoice_id}")
        self.invoice_id = invoice_id


def get_invoice(session, invoice_id: str, user_id: int | None = None) -> Invoice:
    """
    Fetch one invoice. With user_id set, invoices owned by someone else
    are reported as missing.
    """
    stmt = select(Invoice).where(Invoice.id == invoice_id)
    if user_id is not None:
        stmt = stmt.where(Invoice.user_id == user_id)
    inv = session.execute(stmt).scalar_one_or_none()
    if inv is None:
        raise InvoiceNotFound(invoice_id)
    return inv


def list_invoices(session, user_id: int) -> list[Invoice]:
    stmt = (
        select(Invoice)
        .where(Invoice.user_id == user_id)
        .order_by(Invoice.created_at.desc())
    )
    return list(session.execute(stmt).scalars())


def _apply_fields(inv: Invoice, fields: dict) -> None:
    for key in INVOICE_FIELDS:
        if key in fields:
            setattr(inv, key, fields[key])


def create_invoice(session, user_id: int, fields: dict) -> Invoice:
    """Add a new invoice and flush so the generated id is available."""
    inv = Invoice(user_id=user_id)
    _apply_fields(inv, fields)
    session.add(inv)
    session.flush()
    return inv


def update_invoice(session, invoice_id: str, user_id: int, fields: dict) -> Invoice:
    inv = get_invoice(session, invoice_id, user_id=user_id)
    _apply_fields(inv, fields)
    session.flush()
    return inv


def delete_invoice(session, invoice_id: str, user_id: int) -> None:
    inv = get_invoice(session, invoice_id, user_id=user_id)
    session.delete(inv)
    session.flush()


def mark_invoice_paid(session, invoice_id: str, user_id: int) -> None:
    inv = get_invoice(session, invoice_id, user_id=user_id)
    inv.status = "PAID"
    session.flush()
