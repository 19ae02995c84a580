# bulk_generate_pdfs.py
import argparse
import os
from pathlib import Path

from sqlalchemy import extract, select

from config import Config
from models import Base, make_engine, make_session_factory, Invoice, User
from pdf_service import (
    ComposerSettings, FileLogoProvider, InvoiceRecord,
    compose_invoice, document_filename, export_path, store_pdf,
)


def select_invoices(session, username: str = "", year: str = "") -> list[Invoice]:
    q = select(Invoice).order_by(Invoice.created_at.asc())
    if username:
        q = q.join(User, User.id == Invoice.user_id).where(User.username == username)
    if year:
        q = q.where(extract("year", Invoice.issue_date) == int(year))
    return list(session.execute(q).scalars())


def generate_pdfs(invoices, exports_dir: str, regenerate: bool = False,
                  logo_provider=None, settings: ComposerSettings | None = None, log=print) -> dict:
    """Compose each invoice into exports_dir/<year>/. Returns generated/skipped/failed counts."""
    total = len(invoices)
    generated = 0
    skipped = 0
    failed = 0

    for i, inv in enumerate(invoices, start=1):
        year = str(inv.issue_date.year) if inv.issue_date else "undated"
        target = export_path(exports_dir, year, document_filename(inv.invoice_number))
        try:
            if os.path.exists(target) and not regenerate:
                skipped += 1
                log(f"[{i}/{total}] SKIP  {inv.invoice_number} (already has PDF)")
                continue

            document = compose_invoice(InvoiceRecord.from_invoice(inv), logo_provider=logo_provider, settings=settings)
            path = store_pdf(document, exports_dir, year)
            generated += 1
            log(f"[{i}/{total}] DONE  {inv.invoice_number} -> {path}")

        except Exception as e:
            failed += 1
            log(f"[{i}/{total}] FAIL  {inv.invoice_number}  ({e})")

    return {"generated": generated, "skipped": skipped, "failed": failed}


def main():
    parser = argparse.ArgumentParser(description="Bulk generate invoice PDFs.")
    parser.add_argument("--user", type=str, default="", help="Only invoices owned by this username.")
    parser.add_argument("--year", type=str, default="", help="Only invoices dated in a given year (YYYY).")
    parser.add_argument("--all", action="store_true", help="Regenerate PDFs even if one already exists.")
    args = parser.parse_args()

    target_year = (args.year or "").strip()
    if target_year and not (target_year.isdigit() and len(target_year) == 4):
        raise SystemExit("Year must be 4 digits, e.g. --year 2025")

    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)

    with SessionLocal() as s:
        invoices = select_invoices(s, username=args.user.strip(), year=target_year)
        if not invoices:
            print("No invoices found for the given filter.")
            return

        counts = generate_pdfs(
            invoices,
            Config.EXPORTS_DIR,
            regenerate=args.all,
            logo_provider=FileLogoProvider(Config.LOGO_PATH),
            settings=ComposerSettings.from_config(Config),
        )

    print("\n✅ Bulk PDF generation complete.")
    print(f"Generated: {counts['generated']}")
    print(f"Skipped:   {counts['skipped']}")
    print(f"Failed:    {counts['failed']}")
    print(f"Exports:   {Config.EXPORTS_DIR}")


if __name__ == "__main__":
    main()
