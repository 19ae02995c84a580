"""Shared fixtures: app over a temporary SQLite file, clients, fakes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import pytest
from flask import Flask
from flask.testing import FlaskClient
from werkzeug.security import generate_password_hash

from app import create_app
from models import Invoice, User, create_invoice
from notifications import NotificationError


@dataclass
class DrawnText:
    x: float
    y: float
    value: str
    align: str
    font: tuple[str, float]


class RecordingSurface:
    """Surface that keeps every draw call instead of producing a PDF."""

    def __init__(self, image_error: Exception | None = None):
        self.texts: list[DrawnText] = []
        self.rects: list[tuple[float, float, float, float]] = []
        self.lines: list[tuple[float, float, float, float]] = []
        self.images: list[tuple[float, float, float, float]] = []
        self.font: tuple[str, float] = ("Helvetica", 10)
        self.image_error = image_error

    def set_font(self, name: str, size: float) -> None:
        self.font = (name, size)

    def set_text_color(self, rgb) -> None:
        pass

    def set_fill_color(self, rgb) -> None:
        pass

    def set_draw_color(self, rgb) -> None:
        pass

    def fill_rect(self, x: float, y: float, w: float, h: float) -> None:
        self.rects.append((x, y, w, h))

    def line(self, x1: float, y1: float, x2: float, y2: float) -> None:
        self.lines.append((x1, y1, x2, y2))

    def text(self, x: float, y: float, value: str, align: str = "left") -> None:
        self.texts.append(DrawnText(x, y, value, align, self.font))

    def image(self, image, x: float, y: float, w: float, h: float) -> None:
        if self.image_error is not None:
            raise self.image_error
        self.images.append((x, y, w, h))

    def find(self, value: str) -> list[DrawnText]:
        return [t for t in self.texts if t.value == value]

    def values(self) -> list[str]:
        return [t.value for t in self.texts]


class FakeNotifier:
    """Stands in for MailtrapNotifier; records sends, optionally fails."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def _record(self, kind: str, inv: Invoice) -> None:
        if self.fail:
            raise NotificationError("provider unavailable")
        self.sent.append((kind, inv.id, inv.client_email))

    def send_invoice_status(self, kind: str, inv: Invoice, base_url: str) -> None:
        self._record(kind, inv)

    def send_reminder(self, inv: Invoice, company) -> None:
        self._record("reminder", inv)


@pytest.fixture
def recording_surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def app(tmp_path, notifier: FakeNotifier) -> Flask:
    """App bound to a fresh SQLite database file."""
    return create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
            "LOGO_PATH": (tmp_path / "missing-logo.png").as_posix(),
            "APP_BASE_URL": "https://invoices.example.test",
        },
        notifier=notifier,
    )


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def db_session(app: Flask):
    SessionLocal = app.extensions["db_session_factory"]
    with SessionLocal() as s:
        yield s


def add_user(app: Flask, username: str, password: str = "secret123", onboarded: bool = True) -> int:
    SessionLocal = app.extensions["db_session_factory"]
    with SessionLocal() as s:
        u = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=generate_password_hash(password),
        )
        if onboarded:
            u.first_name = "Ada"
            u.last_name = "Lovelace"
            u.address = "12 Analytical Row, London"
        s.add(u)
        s.commit()
        return u.id


def add_invoice(app: Flask, user_id: int, **overrides) -> str:
    fields = dict(SAMPLE_FIELDS)
    fields.update(overrides)
    SessionLocal = app.extensions["db_session_factory"]
    with SessionLocal() as s:
        inv = create_invoice(s, user_id, fields)
        s.commit()
        return inv.id


SAMPLE_FIELDS = {
    "invoice_name": "Website build",
    "invoice_number": "INV-001",
    "status": "PENDING",
    "issue_date": date(2024, 1, 10),
    "due_date": date(2024, 1, 24),
    "currency": "USD",
    "from_name": "Ada Lovelace",
    "from_email": "ada@example.com",
    "from_address": "12 Analytical Row, London",
    "client_name": "Acme",
    "client_email": "a@acme.com",
    "client_address": "1 Long Street, City, Country",
    "invoice_item_description": "Consulting",
    "invoice_item_quantity": 10.0,
    "invoice_item_rate": 50.0,
    "total": 500.0,
    "note": None,
}


@pytest.fixture
def user_id(app: Flask) -> int:
    return add_user(app, "alice")


@pytest.fixture
def auth_client(client: FlaskClient, user_id: int) -> FlaskClient:
    """Client logged in as alice."""
    response = client.post("/login", data={"username": "alice", "password": "secret123"})
    assert response.status_code == 302
    return client


@pytest.fixture
def invoice_form() -> dict[str, str]:
    """A valid invoice form submission."""
    return {
        "invoice_name": "Website build",
        "invoice_number": "INV-001",
        "status": "PENDING",
        "issue_date": "2024-01-10",
        "due_date": "2024-01-24",
        "currency": "usd",
        "from_name": "Ada Lovelace",
        "from_email": "ada@example.com",
        "from_address": "12 Analytical Row, London",
        "client_name": "Acme",
        "client_email": "a@acme.com",
        "client_address": "1 Long Street, City, Country",
        "invoice_item_description": "Consulting",
        "invoice_item_quantity": "10",
        "invoice_item_rate": "50",
        "total": "500",
        "note": "",
    }
