# send_payment_reminders.py
from __future__ import annotations

import argparse
from datetime import date

from sqlalchemy import select

from config import Config
from models import Base, Invoice, make_engine, make_session_factory
from notifications import MailtrapNotifier, NotificationError, company_info, format_long_date
from schemas import is_valid_email


def overdue_invoices(session, today: date) -> list[Invoice]:
    stmt = (
        select(Invoice)
        .where(Invoice.status != "PAID")
        .where(Invoice.due_date.isnot(None))
        .where(Invoice.due_date < today)
        .order_by(Invoice.due_date.asc())
    )
    return list(session.execute(stmt).scalars())


def send_reminders(invoices, notifier, company: dict, dry_run: bool = False, log=print) -> dict:
    sent = 0
    skipped = 0
    failed = 0

    for inv in invoices:
        if not is_valid_email(inv.client_email):
            skipped += 1
            log(f"[REMINDER] SKIP  {inv.invoice_number} (no valid client email)")
            continue

        label = f"{inv.invoice_number} -> {inv.client_email} (due {format_long_date(inv.due_date)})"
        if dry_run:
            log(f"[REMINDER] DRY   {label}")
            continue

        try:
            notifier.send_reminder(inv, company)
        except NotificationError as exc:
            failed += 1
            log(f"[REMINDER] FAIL  {label}: {exc!r}")
            continue

        sent += 1
        log(f"[REMINDER] SENT  {label}")

    return {"sent": sent, "skipped": skipped, "failed": failed}


def main() -> None:
    parser = argparse.ArgumentParser(description="Email payment reminders for overdue invoices.")
    parser.add_argument("--dry-run", action="store_true", help="List the reminders without sending them.")
    args = parser.parse_args()

    cfg = {k: getattr(Config, k) for k in dir(Config) if k.isupper()}
    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    with SessionLocal() as s:
        invoices = overdue_invoices(s, date.today())
        if not invoices:
            print("No overdue invoices.")
            return
        counts = send_reminders(invoices, MailtrapNotifier.from_config(cfg), company_info(cfg), dry_run=args.dry_run)

    print(f"Sent: {counts['sent']}  Skipped: {counts['skipped']}  Failed: {counts['failed']}")


if __name__ == "__main__":
    main()
