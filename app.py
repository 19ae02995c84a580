# app.py
import io
import logging
from datetime import date
from pathlib import Path

from flask import (
    Flask, render_template, request, redirect, url_for,
    flash, send_file, jsonify
)
from flask_login import (
    LoginManager, UserMixin, login_user, logout_user,
    login_required, current_user
)
from werkzeug.security import generate_password_hash, check_password_hash

from config import Config
from models import (
    Base, make_engine, make_session_factory,
    User, Invoice, InvoiceNotFound,
    get_invoice, list_invoices, create_invoice, update_invoice,
    delete_invoice, mark_invoice_paid,
)
from notifications import MailtrapNotifier, NotificationError, company_info
from pdf_service import ComposerSettings, FileLogoProvider, InvoiceRecord, compose_invoice
from schemas import InvoiceForm, OnboardingForm, parse_form

logger = logging.getLogger(__name__)

login_manager = LoginManager()
login_manager.login_view = "login"


# -----------------------------
# Flask-Login user wrapper
# -----------------------------
class AppUser(UserMixin):
    def __init__(self, user_id: int, username: str):
        self.id = str(user_id)
        self.username = username


# -----------------------------
# Helpers
# -----------------------------
def _configure_logging(level: str):
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=(level or "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _ensure_sqlite_dir(db_url: str):
    # sqlite:///path/to/file.db needs the folder to exist
    prefix = "sqlite:///"
    if db_url.startswith(prefix) and ":memory:" not in db_url:
        Path(db_url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


def _current_user_id_int() -> int:
    try:
        return int(current_user.get_id())
    except Exception:
        return -1


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def _invoice_form_values(inv: Invoice) -> dict:
    """Invoice -> the string values the form template expects."""
    return {
        "invoice_name": inv.invoice_name,
        "invoice_number": inv.invoice_number,
        "status": inv.status,
        "issue_date": inv.issue_date.isoformat() if inv.issue_date else "",
        "due_date": inv.due_date.isoformat() if inv.due_date else "",
        "currency": inv.currency,
        "from_name": inv.from_name,
        "from_email": inv.from_email,
        "from_address": inv.from_address,
        "client_name": inv.client_name,
        "client_email": inv.client_email,
        "client_address": inv.client_address,
        "invoice_item_description": inv.invoice_item_description,
        "invoice_item_quantity": f"{inv.invoice_item_quantity:g}",
        "invoice_item_rate": f"{inv.invoice_item_rate:.2f}",
        "total": f"{inv.total:.2f}",
        "note": inv.note or "",
    }


def _new_invoice_defaults(user: User | None) -> dict:
    full_name = " ".join(p for p in [(user.first_name if user else ""), (user.last_name if user else "")] if p)
    return {
        "status": "PENDING",
        "issue_date": date.today().isoformat(),
        "currency": "USD",
        "from_name": full_name,
        "from_email": user.email if user else "",
        "from_address": user.address if user else "",
    }


# -----------------------------
# App factory
# -----------------------------
def create_app(test_config=None, notifier=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    _configure_logging(app.config.get("LOG_LEVEL", "INFO"))
    _ensure_sqlite_dir(app.config["SQLALCHEMY_DATABASE_URI"])

    login_manager.init_app(app)

    engine = make_engine(app.config["SQLALCHEMY_DATABASE_URI"], echo=app.config.get("SQLALCHEMY_ECHO", False))
    Base.metadata.create_all(engine)

    SessionLocal = make_session_factory(engine)
    app.extensions["db_session_factory"] = SessionLocal

    if notifier is None:
        notifier = MailtrapNotifier.from_config(app.config)
    app.extensions["notifier"] = notifier

    composer_settings = ComposerSettings.from_config(app.config)
    logo_provider = FileLogoProvider(app.config.get("LOGO_PATH"))

    def db_session():
        return SessionLocal()

    # Now that SessionLocal exists, bind the user_loader properly.
    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            uid = int(user_id)
        except Exception:
            return None
        with db_session() as s:
            u = s.get(User, uid)
            if not u:
                return None
            return AppUser(u.id, u.username)

    # If there are no users, create an initial admin user from config.
    def _bootstrap_first_user():
        with db_session() as s:
            if s.query(User).first():
                return
            u = User(
                username=app.config["INITIAL_ADMIN_USERNAME"],
                password_hash=generate_password_hash(app.config["INITIAL_ADMIN_PASSWORD"]),
            )
            s.add(u)
            s.commit()
            logger.info("Created initial user %r", u.username)

    _bootstrap_first_user()

    # -----------------------------
    # Error handlers
    # -----------------------------
    @app.errorhandler(InvoiceNotFound)
    def _invoice_not_found(e):
        if _wants_json():
            return jsonify(error="Invoice not found"), 404
        return render_template("error.html", message="Invoice not found."), 404

    @app.errorhandler(NotificationError)
    def _notification_failed(e):
        # the invoice is already saved; only the email failed
        logger.error("Notification failed: %s", e)
        if _wants_json():
            return jsonify(error="Failed to send email"), 500
        return render_template("error.html", message="Something went wrong while sending the email."), 500

    # -----------------------------
    # Auth routes
    # -----------------------------
    @app.route("/login", methods=["GET", "POST"])
    def login():
        if current_user.is_authenticated:
            return redirect(url_for("invoices"))

        if request.method == "POST":
            username = (request.form.get("username") or "").strip()
            password = request.form.get("password") or ""
            with db_session() as s:
                u = s.query(User).filter(User.username == username).first()
                if u and check_password_hash(u.password_hash, password):
                    login_user(AppUser(u.id, u.username))
                    return redirect(url_for("invoices"))

            flash("Invalid username or password.", "error")
        return render_template("login.html")

    @app.route("/register", methods=["GET", "POST"])
    def register():
        if current_user.is_authenticated:
            return redirect(url_for("invoices"))

        if request.method == "POST":
            username = (request.form.get("username") or "").strip()
            email = (request.form.get("email") or "").strip().lower()
            password = request.form.get("password") or ""
            confirm = request.form.get("confirm") or ""

            if not username or len(username) < 3:
                flash("Username must be at least 3 characters.", "error")
                return render_template("register.html")

            if not password or len(password) < 6:
                flash("Password must be at least 6 characters.", "error")
                return render_template("register.html")

            if password != confirm:
                flash("Passwords do not match.", "error")
                return render_template("register.html")

            with db_session() as s:
                taken = s.query(User).filter(User.username == username).first()
                if taken:
                    flash("That username is already taken.", "error")
                    return render_template("register.html")

                u = User(username=username, email=email, password_hash=generate_password_hash(password))
                s.add(u)
                s.commit()

                login_user(AppUser(u.id, u.username))
                return redirect(url_for("onboarding"))

        return render_template("register.html")

    @app.route("/logout")
    @login_required
    def logout():
        logout_user()
        return redirect(url_for("login"))

    @app.route("/onboarding", methods=["GET", "POST"])
    @login_required
    def onboarding():
        if request.method == "POST":
            form, errors = parse_form(OnboardingForm, request.form)
            if errors:
                return render_template("onboarding.html", form=request.form, errors=errors), 400

            with db_session() as s:
                u = s.get(User, _current_user_id_int())
                u.first_name = form.first_name
                u.last_name = form.last_name
                u.address = form.address
                s.commit()
            return redirect(url_for("invoices"))

        return render_template("onboarding.html", form={}, errors={})

    # -----------------------------
    # Index
    # -----------------------------
    @app.route("/")
    def index():
        return redirect(url_for("invoices" if current_user.is_authenticated else "login"))

    # -----------------------------
    # Dashboard: invoice list (scoped to user)
    # -----------------------------
    @app.route("/dashboard/invoices")
    @login_required
    def invoices():
        uid = _current_user_id_int()
        with db_session() as s:
            u = s.get(User, uid)
            if u is not None and not u.is_onboarded():
                return redirect(url_for("onboarding"))
            invoices_list = list_invoices(s, uid)
            return render_template("invoices_list.html", invoices=invoices_list)

    # -----------------------------
    # Create invoice (owned by user)
    # -----------------------------
    @app.route("/dashboard/invoices/new", methods=["GET", "POST"])
    @login_required
    def invoice_new():
        if request.method == "POST":
            form, errors = parse_form(InvoiceForm, request.form)
            if errors:
                return render_template("invoice_form.html", mode="new", form=request.form, errors=errors), 400

            with db_session() as s:
                inv = create_invoice(s, _current_user_id_int(), form.model_dump())
                s.commit()
                logger.info("Invoice %s created by user %s", inv.id, inv.user_id)
                notifier.send_invoice_status("invoice_created", inv, app.config["APP_BASE_URL"])

            flash("Invoice created.", "success")
            return redirect(url_for("invoices"))

        with db_session() as s:
            defaults = _new_invoice_defaults(s.get(User, _current_user_id_int()))
        return render_template("invoice_form.html", mode="new", form=defaults, errors={})

    # -----------------------------
    # Edit invoice (scoped)
    # -----------------------------
    @app.route("/dashboard/invoices/<invoice_id>/edit", methods=["GET", "POST"])
    @login_required
    def invoice_edit(invoice_id):
        uid = _current_user_id_int()
        if request.method == "POST":
            form, errors = parse_form(InvoiceForm, request.form)
            if errors:
                return render_template(
                    "invoice_form.html", mode="edit", invoice_id=invoice_id, form=request.form, errors=errors
                ), 400

            with db_session() as s:
                inv = update_invoice(s, invoice_id, uid, form.model_dump())
                s.commit()
                notifier.send_invoice_status("invoice_updated", inv, app.config["APP_BASE_URL"])

            flash("Invoice updated.", "success")
            return redirect(url_for("invoices"))

        with db_session() as s:
            inv = get_invoice(s, invoice_id, user_id=uid)
            values = _invoice_form_values(inv)
        return render_template("invoice_form.html", mode="edit", invoice_id=invoice_id, form=values, errors={})

    # -----------------------------
    # Delete invoice (scoped)
    # -----------------------------
    @app.route("/dashboard/invoices/<invoice_id>/delete", methods=["POST"])
    @login_required
    def invoice_delete(invoice_id):
        with db_session() as s:
            delete_invoice(s, invoice_id, _current_user_id_int())
            s.commit()

        flash("Invoice deleted.", "success")
        return redirect(url_for("invoices"))

    # -----------------------------
    # Mark invoice as paid (scoped)
    # -----------------------------
    @app.route("/dashboard/invoices/<invoice_id>/mark-paid", methods=["POST"])
    @login_required
    def invoice_mark_paid(invoice_id):
        with db_session() as s:
            mark_invoice_paid(s, invoice_id, _current_user_id_int())
            s.commit()

        flash("Invoice marked as paid.", "success")
        return redirect(url_for("invoices"))

    # -----------------------------
    # Public read API + reminder
    # -----------------------------
    @app.route("/api/invoice/<invoice_id>")
    def api_invoice(invoice_id):
        with db_session() as s:
            inv = get_invoice(s, invoice_id)
            return jsonify(inv.to_api_dict())

    @app.route("/api/email/<invoice_id>", methods=["POST"])
    @login_required
    def api_email_reminder(invoice_id):
        try:
            with db_session() as s:
                inv = get_invoice(s, invoice_id, user_id=_current_user_id_int())
                notifier.send_reminder(inv, company_info(app.config))
        except InvoiceNotFound:
            return jsonify(error="Invoice not found"), 404
        except NotificationError:
            return jsonify(error="Failed to send Email reminder"), 500
        return jsonify(success=True)

    # -----------------------------
    # Invoice preview + PDF (linked from emails)
    # -----------------------------
    @app.route("/invoice/<invoice_id>")
    def invoice_view(invoice_id):
        with db_session() as s:
            inv = get_invoice(s, invoice_id)
            return render_template("invoice_view.html", inv=inv)

    @app.route("/invoice/<invoice_id>/pdf")
    def invoice_pdf(invoice_id):
        with db_session() as s:
            record = InvoiceRecord.from_invoice(get_invoice(s, invoice_id))

        document = compose_invoice(record, logo_provider=logo_provider, settings=composer_settings)
        return send_file(
            io.BytesIO(document.data),
            as_attachment=True,
            download_name=document.filename,
            mimetype=document.mimetype,
        )

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
