# pdf_service.py
"""
Single-page invoice PDF.

The layout works in millimetres with the origin at the top-left corner of
the page and y growing downwards. Each section draws onto a Surface and
returns the Cursor where the next section starts; CanvasSurface maps those
coordinates onto a reportlab canvas (points, origin bottom-left).
"""
from __future__ import annotations

import io
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Protocol, Sequence

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.lib.utils import ImageReader

from models import Invoice

logger = logging.getLogger(__name__)

RGB = tuple[int, int, int]

PRIMARY: RGB = (40, 60, 80)
SECONDARY_TEXT: RGB = (90, 90, 90)
DARK_TEXT: RGB = (30, 30, 30)
HEADER_BG: RGB = (235, 235, 235)
ROW_EVEN_BG: RGB = (248, 248, 248)
SEPARATOR: RGB = (200, 200, 200)
WHITE: RGB = (255, 255, 255)
BLACK: RGB = (0, 0, 0)

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
BODY_SIZE = 10

LOGO_PLACEHOLDER = "Your Logo"
DEFAULT_FOOTER = "Thank you for doing business with us!"
NOT_A_NUMBER = "N/A"


# -----------------------------
# Input record
# -----------------------------
@dataclass(frozen=True)
class LineItem:
    description: str = ""
    quantity: float = 0.0
    rate: float = 0.0

    def amount(self) -> Decimal:
        """quantity x rate, exact. NaN when either side is not finite."""
        q, r = _decimal(self.quantity), _decimal(self.rate)
        if not (q.is_finite() and r.is_finite()):
            return Decimal("NaN")
        with localcontext() as ctx:
            ctx.prec = max(28, len(q.as_tuple().digits) + len(r.as_tuple().digits))
            return q * r


@dataclass(frozen=True)
class InvoiceRecord:
    invoice_number: str = ""
    invoice_name: str = ""

    from_name: str = ""
    from_address: str = ""
    from_email: str = ""
    client_name: str = ""
    client_address: str = ""
    client_email: str = ""

    issue_date: date | None = None
    due_date: date | None = None

    line_items: tuple[LineItem, ...] = ()
    currency: str = ""
    total: float = 0.0
    note: str = ""

    @classmethod
    def from_invoice(cls, inv: Invoice) -> "InvoiceRecord":
        return cls(
            invoice_number=inv.invoice_number or "",
            invoice_name=inv.invoice_name or "",
            from_name=inv.from_name or "",
            from_address=inv.from_address or "",
            from_email=inv.from_email or "",
            client_name=inv.client_name or "",
            client_address=inv.client_address or "",
            client_email=inv.client_email or "",
            issue_date=_as_date(inv.issue_date),
            due_date=_as_date(inv.due_date),
            line_items=(
                LineItem(
                    description=inv.invoice_item_description or "",
                    quantity=inv.invoice_item_quantity or 0.0,
                    rate=inv.invoice_item_rate or 0.0,
                ),
            ),
            currency=inv.currency or "",
            total=inv.total or 0.0,
            note=inv.note or "",
        )

    @classmethod
    def from_api_dict(cls, data: Mapping) -> "InvoiceRecord":
        """Build from the camelCase shape served by /api/invoice/<id>."""
        def _s(key: str) -> str:
            val = data.get(key)
            return "" if val is None else str(val)

        return cls(
            invoice_number=_s("invoiceNumber"),
            invoice_name=_s("invoiceName"),
            from_name=_s("fromName"),
            from_address=_s("fromAddress"),
            from_email=_s("fromEmail"),
            client_name=_s("clientName"),
            client_address=_s("clientAddress"),
            client_email=_s("clientEmail"),
            issue_date=_as_date(data.get("date")),
            due_date=_as_date(data.get("dueDate")),
            line_items=(
                LineItem(
                    description=_s("invoiceItemDescription"),
                    quantity=data.get("invoiceItemQuantity") or 0.0,
                    rate=data.get("invoiceItemRate") or 0.0,
                ),
            ),
            currency=_s("currency"),
            total=data.get("total") or 0.0,
            note=_s("note"),
        )


@dataclass(frozen=True)
class RenderedDocument:
    data: bytes
    filename: str
    mimetype: str = "application/pdf"


def document_filename(invoice_number: str | None) -> str:
    return f"invoice-{invoice_number or 'Unknown'}.pdf"


# -----------------------------
# Formatting helpers
# -----------------------------
def _decimal(x) -> Decimal:
    try:
        return Decimal(str(x if x is not None else 0))
    except InvalidOperation:
        return Decimal(0)


def _two_dp(x) -> str:
    value = x if isinstance(x, Decimal) else _decimal(x)
    if not value.is_finite():
        return NOT_A_NUMBER
    # quantize needs every integer digit plus two decimals within precision
    with localcontext() as ctx:
        ctx.prec = max(28, value.adjusted() + 3)
        return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _plain_number(x) -> str:
    try:
        value = float(x or 0)
    except (TypeError, ValueError):
        return "0"
    return str(int(value)) if value.is_integer() else str(value)


def _as_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        logger.debug("Unparseable invoice date %r, treating as absent", value)
        return None


def _short_date(d: date | None) -> str:
    if d is None:
        return ""
    return f"{d:%b} {d.day}, {d.year}"


def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


# -----------------------------
# Text wrapping
# -----------------------------
def _wrap_paragraph(text: str, font: str, size: float, max_width: float) -> list[str]:
    words = text.split()
    lines = []
    current = ""

    def split_long_token(token: str):
        """Break a single long token (like an email) into width-safe chunks."""
        if stringWidth(token, font, size) <= max_width:
            return [token]
        chunks = []
        remaining = token
        while remaining:
            lo, hi = 1, len(remaining)
            fit = 1
            while lo <= hi:
                mid = (lo + hi) // 2
                piece = remaining[:mid]
                if stringWidth(piece, font, size) <= max_width:
                    fit = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
            chunks.append(remaining[:fit])
            remaining = remaining[fit:]
        return chunks

    expanded_words = []
    for w in words:
        expanded_words.extend(split_long_token(w))

    for w in expanded_words:
        test = current + (" " if current else "") + w
        if stringWidth(test, font, size) <= max_width:
            current = test
        else:
            if current:
                lines.append(current)
            current = w
    if current:
        lines.append(current)
    return lines or [""]


def wrap_text(text, width_mm: float, font: str = FONT, size: float = BODY_SIZE) -> list[str]:
    """
    Wrap text to width_mm using the PDF font metrics.
    Explicit newlines always start a new line; empty text is one empty line.
    """
    raw = str(text or "")
    max_width = max(1.0, width_mm * mm)
    lines: list[str] = []
    for paragraph in raw.splitlines() or [""]:
        lines.extend(_wrap_paragraph(paragraph, font, size, max_width))
    return lines or [""]


# -----------------------------
# Drawing surface
# -----------------------------
class Surface(Protocol):
    def set_font(self, name: str, size: float) -> None: ...
    def set_text_color(self, rgb: RGB) -> None: ...
    def set_fill_color(self, rgb: RGB) -> None: ...
    def set_draw_color(self, rgb: RGB) -> None: ...
    def fill_rect(self, x: float, y: float, w: float, h: float) -> None: ...
    def line(self, x1: float, y1: float, x2: float, y2: float) -> None: ...
    def text(self, x: float, y: float, value: str, align: str = "left") -> None: ...
    def image(self, image, x: float, y: float, w: float, h: float) -> None: ...


def _unit_rgb(rgb: RGB) -> tuple[float, float, float]:
    return tuple(c / 255.0 for c in rgb)


class CanvasSurface:
    """reportlab canvas behind the Surface protocol (mm, top-down)."""

    def __init__(self, buffer, page_height_mm: float, title: str = "", compress: bool = True):
        self._page_h = page_height_mm
        self._c = canvas.Canvas(buffer, pagesize=A4, pageCompression=1 if compress else 0)
        if title:
            self._c.setTitle(title)
        # reportlab uses the fill colour for text too, so keep both and
        # switch before each draw
        self._text_rgb = DARK_TEXT
        self._fill_rgb = WHITE

    def _y(self, y: float) -> float:
        return (self._page_h - y) * mm

    def set_font(self, name: str, size: float) -> None:
        self._c.setFont(name, size)

    def set_text_color(self, rgb: RGB) -> None:
        self._text_rgb = rgb

    def set_fill_color(self, rgb: RGB) -> None:
        self._fill_rgb = rgb

    def set_draw_color(self, rgb: RGB) -> None:
        self._c.setStrokeColorRGB(*_unit_rgb(rgb))

    def fill_rect(self, x: float, y: float, w: float, h: float) -> None:
        self._c.setFillColorRGB(*_unit_rgb(self._fill_rgb))
        self._c.rect(x * mm, self._y(y + h), w * mm, h * mm, stroke=0, fill=1)

    def line(self, x1: float, y1: float, x2: float, y2: float) -> None:
        self._c.line(x1 * mm, self._y(y1), x2 * mm, self._y(y2))

    def text(self, x: float, y: float, value: str, align: str = "left") -> None:
        self._c.setFillColorRGB(*_unit_rgb(self._text_rgb))
        if align == "right":
            self._c.drawRightString(x * mm, self._y(y), value)
        elif align == "center":
            self._c.drawCentredString(x * mm, self._y(y), value)
        else:
            self._c.drawString(x * mm, self._y(y), value)

    def image(self, image, x: float, y: float, w: float, h: float) -> None:
        self._c.drawImage(image, x * mm, self._y(y + h), w * mm, h * mm, mask="auto")

    def finish(self) -> None:
        self._c.showPage()
        self._c.save()


# -----------------------------
# Logo providers
# -----------------------------
class LogoProvider(Protocol):
    def load(self) -> ImageReader | None:
        """Decoded logo, or None when it is not available."""
        ...


def _read_image(source, label: str) -> ImageReader | None:
    try:
        reader = ImageReader(source)
        # decode now so a broken file fails here and not mid-draw
        reader.getRGBData()
    except Exception as exc:
        logger.warning("Logo %s could not be loaded (%s); using placeholder", label, exc)
        return None
    return reader


class FileLogoProvider:
    def __init__(self, path: str | None):
        self.path = (path or "").strip()

    def load(self) -> ImageReader | None:
        if not self.path or not os.path.exists(self.path):
            logger.warning("Logo file not found: %r; using placeholder", self.path)
            return None
        return _read_image(self.path, self.path)


class BytesLogoProvider:
    def __init__(self, data: bytes | None):
        self.data = data

    def load(self) -> ImageReader | None:
        if not self.data:
            return None
        return _read_image(io.BytesIO(self.data), "<bytes>")


# -----------------------------
# Layout
# -----------------------------
@dataclass(frozen=True)
class PageLayout:
    width: float = A4[0] / mm
    height: float = A4[1] / mm
    margin_x: float = 20.0
    line_height: float = 5.0
    banner_height: float = 40.0
    columns_top: float = 60.0
    value_offset: float = 30.0
    column_gap: float = 15.0
    footer_offset: float = 15.0

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin_x

    @property
    def right_column_x(self) -> float:
        return self.width / 2 + 10

    @property
    def party_wrap_width(self) -> float:
        return self.width / 2 - self.margin_x - 5

    @property
    def item_col_width(self) -> float:
        return (self.content_width - 50) / 3

    @property
    def quantity_x(self) -> float:
        return self.margin_x + self.item_col_width * 1.5 + 20

    @property
    def rate_x(self) -> float:
        return self.margin_x + self.item_col_width * 2.5 + 20

    @property
    def right_edge(self) -> float:
        return self.width - self.margin_x


@dataclass(frozen=True)
class Cursor:
    y: float

    def down(self, dy: float) -> "Cursor":
        return Cursor(self.y + dy)


def _body_font(surface: Surface) -> None:
    surface.set_font(FONT, BODY_SIZE)
    surface.set_text_color(DARK_TEXT)


def _heading(surface: Surface, x: float, y: float, label: str) -> None:
    surface.set_font(FONT, 12)
    surface.set_text_color(PRIMARY)
    surface.text(x, y, label)
    _body_font(surface)


def _draw_lines(surface: Surface, x: float, y: float, lines: Sequence[str], line_height: float) -> None:
    for i, ln in enumerate(lines):
        surface.text(x, y + i * line_height, ln)


def draw_banner(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout,
                logo: ImageReader | None = None) -> Cursor:
    surface.set_fill_color(PRIMARY)
    surface.fill_rect(0, cursor.y, layout.width, layout.banner_height)

    placed = False
    if logo is not None:
        try:
            surface.image(logo, layout.margin_x, cursor.y + 8, 28, 24)
            placed = True
        except Exception as exc:
            logger.warning("Logo could not be drawn (%s); using placeholder", exc)
    if not placed:
        surface.set_text_color(WHITE)
        surface.set_font(FONT, 16)
        surface.text(layout.margin_x, cursor.y + 22, LOGO_PLACEHOLDER)

    surface.set_text_color(WHITE)
    surface.set_font(FONT_BOLD, 16)
    surface.text(layout.right_edge, cursor.y + 20, (record.invoice_name or "").upper(), align="right")
    surface.set_font(FONT, BODY_SIZE)
    surface.text(layout.right_edge, cursor.y + 28, (record.from_name or "").upper(), align="right")

    _body_font(surface)
    return Cursor(max(cursor.y + layout.banner_height, layout.columns_top))


def draw_invoice_details(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    x = layout.margin_x
    lh = layout.line_height
    _heading(surface, x, cursor.y, "INVOICE DETAILS:")

    rows = [
        (1.5, "Invoice No:", record.invoice_number or "N/A"),
        (2.5, "Date:", _short_date(record.issue_date) or "N/A"),
    ]
    if record.due_date:
        rows.append((3.5, "Due Date:", _short_date(record.due_date)))

    for offset, label, value in rows:
        surface.text(x, cursor.y + lh * offset, label)
        surface.text(x + layout.value_offset, cursor.y + lh * offset, value)

    # last row offset is 2.5 or 3.5 lines depending on the due date
    content_height = lh * rows[-1][0]
    return cursor.down(content_height + lh * 2)


def draw_party_block(surface: Surface, cursor: Cursor, x: float, heading: str,
                     name: str, address: str, email: str, layout: PageLayout) -> Cursor:
    """Heading, name, wrapped address, email. Returns the cursor below the block."""
    lh = layout.line_height
    _heading(surface, x, cursor.y, heading)

    surface.text(x, cursor.y + lh * 1.5, name or "")
    address_lines = wrap_text(address, layout.party_wrap_width)
    _draw_lines(surface, x, cursor.y + lh * 2.5, address_lines, lh)
    address_height = len(address_lines) * lh
    surface.text(x, cursor.y + lh * 2.5 + address_height, email or "")

    return cursor.down(lh * 2.5 + address_height + lh)


def draw_bill_to(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    return draw_party_block(
        surface, cursor, layout.margin_x, "BILL TO:",
        record.client_name, record.client_address, record.client_email, layout,
    )


def draw_billed_from(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    return draw_party_block(
        surface, cursor, layout.right_column_x, "BILLED FROM:",
        record.from_name, record.from_address, record.from_email, layout,
    )


def merge_columns(left: Cursor, right: Cursor, gap: float) -> Cursor:
    return Cursor(max(left.y, right.y) + gap)


def draw_separator(surface: Surface, cursor: Cursor, layout: PageLayout) -> Cursor:
    surface.set_draw_color(SEPARATOR)
    surface.line(layout.margin_x, cursor.y, layout.right_edge, cursor.y)
    return cursor.down(10)


def draw_line_items(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    lh = layout.line_height
    band_x = layout.margin_x - 2
    band_w = layout.content_width + 4
    y = cursor.y

    # Header band
    surface.set_font(FONT_BOLD, 12)
    surface.set_fill_color(HEADER_BG)
    surface.fill_rect(band_x, y - 5, band_w, 10)
    surface.set_text_color(BLACK)
    surface.text(layout.margin_x, y, "Description")
    surface.text(layout.quantity_x, y, "Quantity", align="center")
    surface.text(layout.rate_x, y, "Rate", align="center")
    surface.text(layout.right_edge, y, "Amount", align="right")

    y += 10
    _body_font(surface)

    items = record.line_items or (LineItem(),)
    for idx, item in enumerate(items):
        if idx % 2 == 0:
            surface.set_fill_color(ROW_EVEN_BG)
            surface.fill_rect(band_x, y - 5, band_w, 10)

        desc_lines = wrap_text(item.description, layout.item_col_width * 1.5)
        _draw_lines(surface, layout.margin_x, y, desc_lines, lh)
        desc_height = len(desc_lines) * lh

        # numbers sit on the middle of the wrapped description
        mid_y = y + desc_height / 2 - lh / 2
        surface.text(layout.quantity_x, mid_y, _plain_number(item.quantity), align="center")
        surface.text(layout.rate_x, mid_y, _two_dp(item.rate), align="center")
        surface.text(layout.right_edge, mid_y, _two_dp(item.amount()), align="right")

        y += max(desc_height, lh * 2) + 5

    return Cursor(y)


def draw_totals(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    y = cursor.y
    surface.set_draw_color(SEPARATOR)
    surface.line(layout.width - 70, y - 5, layout.right_edge, y - 5)

    surface.set_font(FONT_BOLD, 14)
    surface.set_text_color(PRIMARY)
    surface.text(layout.width - 80, y, "TOTAL:")
    surface.set_text_color(DARK_TEXT)
    # stored total, not a sum of the line items
    surface.text(layout.right_edge, y, f"{record.currency or ''} {_two_dp(record.total)}", align="right")

    _body_font(surface)
    return cursor.down(20)


def draw_notes(surface: Surface, cursor: Cursor, record: InvoiceRecord, layout: PageLayout) -> Cursor:
    if not record.note:
        return cursor

    surface.set_font(FONT, BODY_SIZE)
    surface.set_text_color(SECONDARY_TEXT)
    surface.text(layout.margin_x, cursor.y, "Notes:")
    note_lines = wrap_text(record.note, layout.content_width)
    _draw_lines(surface, layout.margin_x, cursor.y + 7, note_lines, layout.line_height)

    _body_font(surface)
    return cursor.down(len(note_lines) * layout.line_height + 10)


def draw_footer(surface: Surface, cursor: Cursor, text: str, layout: PageLayout) -> Cursor:
    """Anchored to the page bottom; the flow cursor is returned untouched."""
    surface.set_font(FONT, 9)
    surface.set_text_color(SECONDARY_TEXT)
    surface.text(layout.width / 2, layout.height - layout.footer_offset, text, align="center")
    return cursor


def lay_out_invoice(surface: Surface, record: InvoiceRecord, layout: PageLayout,
                    logo: ImageReader | None = None, footer_text: str = DEFAULT_FOOTER) -> Cursor:
    """Draw every section in order. Returns the flow cursor after the notes."""
    _body_font(surface)
    top = draw_banner(surface, Cursor(0), record, layout, logo=logo)

    left = draw_invoice_details(surface, top, record, layout)
    left = draw_bill_to(surface, left, record, layout)
    right = draw_billed_from(surface, top, record, layout)

    cursor = merge_columns(left, right, layout.column_gap)
    cursor = draw_separator(surface, cursor, layout)
    cursor = draw_line_items(surface, cursor, record, layout)
    cursor = draw_totals(surface, cursor, record, layout)
    cursor = draw_notes(surface, cursor, record, layout)
    return draw_footer(surface, cursor, footer_text, layout)


# -----------------------------
# Composition entry points
# -----------------------------
@dataclass(frozen=True)
class ComposerSettings:
    footer_text: str = DEFAULT_FOOTER
    compress: bool = True
    layout: PageLayout = field(default_factory=PageLayout)

    @classmethod
    def from_config(cls, cfg) -> "ComposerSettings":
        """cfg is a Flask config mapping or the Config class."""
        def _get(key, default):
            if isinstance(cfg, Mapping):
                return cfg.get(key, default)
            return getattr(cfg, key, default)

        return cls(
            footer_text=_get("PDF_FOOTER_TEXT", DEFAULT_FOOTER) or DEFAULT_FOOTER,
            compress=bool(_get("PDF_COMPRESS", True)),
        )


def compose_invoice(record: InvoiceRecord, logo_provider: LogoProvider | None = None,
                    settings: ComposerSettings | None = None) -> RenderedDocument:
    """
    Render one invoice to a single A4 page.
    Every field may be missing; a logo that cannot be loaded is replaced by
    a placeholder label.
    """
    settings = settings or ComposerSettings()
    layout = settings.layout

    buf = io.BytesIO()
    title = f"Invoice - {record.invoice_number}" if record.invoice_number else "Invoice"
    surface = CanvasSurface(buf, layout.height, title=title, compress=settings.compress)

    logo = logo_provider.load() if logo_provider is not None else None
    lay_out_invoice(surface, record, layout, logo=logo, footer_text=settings.footer_text)
    surface.finish()

    return RenderedDocument(data=buf.getvalue(), filename=document_filename(record.invoice_number))


def export_path(exports_dir: str, year: str, filename: str) -> str:
    """Absolute path a document with this filename is stored at."""
    return os.path.abspath(os.path.join(exports_dir, year, _safe_filename(filename)))


def store_pdf(document: RenderedDocument, exports_dir: str, year: str) -> str:
    """
    Write a composed document under exports_dir/<year>/.
    Returns: absolute pdf path on disk.
    """
    pdf_path = export_path(exports_dir, year, document.filename)
    os.makedirs(os.path.dirname(pdf_path), exist_ok=True)
    with open(pdf_path, "wb") as fh:
        fh.write(document.data)
    return pdf_path
