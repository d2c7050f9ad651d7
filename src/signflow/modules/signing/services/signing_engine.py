import base64
import binascii
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.lib.colors import Color
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from signflow.errors import InvalidSignatureImage, PageNotFound, StorageError
from signflow.modules.signing.services.compliance import format_signing_time, get_compliance_info
from signflow.modules.storage.services.content_store import ContentStore
from signflow.utils.hashing import sha256_hex_bytes, sha256_hex_text

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_FORMATS = {"PNG", "JPEG"}
MAX_MARK_FONT_SIZE = 30
MIN_MARK_FONT_SIZE = 6

# Página de registro de firmas que el motor añade tras el contenido del documento
RECORD_PAGE_WIDTH, RECORD_PAGE_HEIGHT = letter
RECORD_MARGIN = 40
RECORD_HEADER_HEIGHT = 60
RECORD_SLOT_HEIGHT = 70
RECORD_SLOTS_PER_PAGE = int(
    (RECORD_PAGE_HEIGHT - 2 * RECORD_MARGIN - RECORD_HEADER_HEIGHT) // RECORD_SLOT_HEIGHT
)


@dataclass(frozen=True)
class Placement:
    """Caja normalizada; ``page`` empieza en 1."""
    page: int
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict:
        return {"page": self.page, "x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class SignatureMark:
    image: Optional[bytes] = None
    text: Optional[str] = None
    signer_name: Optional[str] = None
    suppress_metadata: bool = False

    @property
    def is_image(self) -> bool:
        return self.image is not None


@dataclass(frozen=True)
class FingerprintInputs:
    document_id: str
    signer_email: str
    signer_name: str
    signed_at: datetime


@dataclass(frozen=True)
class SignedArtifact:
    path: str
    sha256: str
    size: int
    fingerprint: str
    step: int


def decode_signature_image(payload: str) -> bytes:
    """Acepta base64 puro o data URL (``data:image/png;base64,...``)."""
    if not payload:
        raise InvalidSignatureImage("Signature image is empty")
    data = payload.split(",", 1)[1] if payload.startswith("data:") else payload
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSignatureImage("Signature image is not valid base64") from exc
    check_signature_image(raw)
    return raw


def check_signature_image(raw: bytes) -> None:
    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise InvalidSignatureImage("Signature image could not be decoded") from exc
    if fmt not in ALLOWED_IMAGE_FORMATS:
        raise InvalidSignatureImage(f"Unsupported signature image format: {fmt}")


def image_extension(raw: bytes) -> str:
    with Image.open(io.BytesIO(raw)) as img:
        return "jpg" if img.format == "JPEG" else "png"


def epoch_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def document_fingerprint(inputs: FingerprintInputs) -> str:
    millis = epoch_millis(inputs.signed_at)
    return sha256_hex_text(f"{inputs.document_id}{inputs.signer_email}{millis}")[:16].upper()


def record_pages_for(steps: int) -> int:
    """Páginas de registro presentes tras ``steps`` pasos de firma."""
    if steps <= 0:
        return 0
    return (steps + RECORD_SLOTS_PER_PAGE - 1) // RECORD_SLOTS_PER_PAGE


def content_page_count(pdf_bytes: bytes, prior_steps: int) -> int:
    reader = _read_pdf(pdf_bytes)
    return len(reader.pages) - record_pages_for(prior_steps)


def _read_pdf(pdf_bytes: bytes) -> PdfReader:
    try:
        return PdfReader(io.BytesIO(pdf_bytes))
    except (PdfReadError, ValueError, KeyError) as exc:
        raise StorageError("Stored PDF could not be parsed") from exc


def _write_pdf(writer: PdfWriter) -> bytes:
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


class SigningEngine:
    """Dibuja la marca, añade el pie de cumplimiento y guarda el PDF completo.

    El hash que se devuelve siempre se calcula sobre los bytes exactos que se
    escribieron en el almacén, nunca sobre versiones intermedias.
    """

    def __init__(self, store: ContentStore, jurisdiction: str = "IN"):
        self.store = store
        self.jurisdiction = jurisdiction

    # --- marca -------------------------------------------------------------

    def _draw_mark(self, c, mark: SignatureMark, bx: float, by: float, bw: float, bh: float):
        if mark.is_image:
            img = Image.open(io.BytesIO(mark.image)).convert("RGBA")
            c.drawImage(
                ImageReader(img), bx, by, width=bw, height=bh,
                mask="auto", preserveAspectRatio=True, anchor="sw",
            )
            return

        text = (mark.text or "").strip()
        size = min(MAX_MARK_FONT_SIZE, bh * 0.8)
        while size > MIN_MARK_FONT_SIZE and stringWidth(text, "Helvetica-Bold", size) > bw:
            size -= 1
        c.setFillColorRGB(0, 0, 0)
        c.setFont("Helvetica-Bold", max(MIN_MARK_FONT_SIZE, size))
        c.drawString(bx, by + max(0.0, (bh - size) / 2), text)

    def _draw_caption(self, c, mark: SignatureMark, signed_at: datetime,
                      bx: float, by: float, bh: float, bottom: float):
        caption = f"Signed by {mark.signer_name or 'signer'} on {format_signing_time(signed_at, self.jurisdiction)}"
        c.setFillColor(Color(0.3, 0.3, 0.3))
        c.setFont("Helvetica", 6)
        cy = by - 8 if by - 8 >= bottom else by + bh + 2
        c.drawString(bx, cy, caption)

    def render_signature(self, base_bytes: bytes, placement: Placement, mark: SignatureMark,
                         prior_steps: int = 0, signed_at: Optional[datetime] = None) -> bytes:
        if not mark.is_image and not (mark.text or "").strip():
            raise InvalidSignatureImage("A signature image or signature text is required")
        if mark.is_image:
            check_signature_image(mark.image)

        reader = _read_pdf(base_bytes)
        pages = len(reader.pages) - record_pages_for(prior_steps)
        if placement.page < 1 or placement.page > pages:
            raise PageNotFound(f"Page {placement.page} does not exist (document has {pages} pages)")

        target = reader.pages[placement.page - 1]
        box = target.mediabox
        left, bottom = float(box.left), float(box.bottom)
        width, height = float(box.width), float(box.height)

        bx = left + placement.x * width
        by = bottom + placement.y * height
        bw = placement.width * width
        bh = placement.height * height

        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=(left + width, bottom + height))
        self._draw_mark(c, mark, bx, by, bw, bh)
        if not mark.suppress_metadata and signed_at is not None:
            self._draw_caption(c, mark, signed_at, bx, by, bh, bottom)
        c.save()
        buf.seek(0)
        target.merge_page(PdfReader(buf).pages[0])

        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        return _write_pdf(writer)

    # --- pie de cumplimiento ----------------------------------------------

    def _draw_record_header(self, c):
        c.setFillColorRGB(0, 0, 0)
        c.setFont("Helvetica-Bold", 14)
        c.drawString(RECORD_MARGIN, RECORD_PAGE_HEIGHT - RECORD_MARGIN - 14, "Signature Record")
        c.setFont("Helvetica", 8)
        c.setFillColor(Color(0.4, 0.4, 0.4))
        c.drawString(
            RECORD_MARGIN, RECORD_PAGE_HEIGHT - RECORD_MARGIN - 30,
            get_compliance_info(self.jurisdiction).legal_notice[:140],
        )

    def _draw_footer_slot(self, c, slot: int, step: int, fingerprint: str, inputs: FingerprintInputs):
        info = get_compliance_info(self.jurisdiction)
        top = RECORD_PAGE_HEIGHT - RECORD_MARGIN - RECORD_HEADER_HEIGHT - slot * RECORD_SLOT_HEIGHT
        right = RECORD_PAGE_WIDTH - RECORD_MARGIN

        c.setFillColor(Color(0.2, 0.2, 0.2))
        c.rect(RECORD_MARGIN, top - 1, right - RECORD_MARGIN, 1, stroke=0, fill=1)

        c.setFillColorRGB(0, 0, 0)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(RECORD_MARGIN, top - 14, f"{info.footer_heading} (step {step})")

        c.setFont("Helvetica", 9)
        c.drawString(RECORD_MARGIN, top - 30, f"Digital Fingerprint: {fingerprint}")
        c.drawRightString(right, top - 30, f"Digitally Signed: {format_signing_time(inputs.signed_at, self.jurisdiction)}")
        c.drawString(RECORD_MARGIN, top - 44, f"Signer: {inputs.signer_name} <{inputs.signer_email}>")

        c.setFont("Helvetica", 8)
        c.setFillColor(Color(0.5, 0.5, 0.5))
        c.drawString(RECORD_MARGIN, top - 58, info.footer_statement)

    def append_compliance_footer(self, rendered_bytes: bytes, inputs: FingerprintInputs,
                                 step: int) -> bytes:
        """Añade el bloque del paso ``step`` a la página de registro, creando una nueva si hace falta."""
        fingerprint = document_fingerprint(inputs)
        slot = (step - 1) % RECORD_SLOTS_PER_PAGE
        new_page = slot == 0

        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=(RECORD_PAGE_WIDTH, RECORD_PAGE_HEIGHT))
        if new_page:
            self._draw_record_header(c)
        self._draw_footer_slot(c, slot, step, fingerprint, inputs)
        c.save()
        buf.seek(0)
        overlay = PdfReader(buf).pages[0]

        reader = _read_pdf(rendered_bytes)
        if not new_page:
            reader.pages[-1].merge_page(overlay)

        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        if new_page:
            writer.add_page(overlay)
        return _write_pdf(writer)

    # --- artefacto completo ------------------------------------------------

    def produce_artifact(self, base_bytes: bytes, placement: Placement, mark: SignatureMark,
                         inputs: FingerprintInputs, step: int) -> SignedArtifact:
        """Genera la versión ``step`` a partir de la versión completa anterior."""
        rendered = self.render_signature(
            base_bytes, placement, mark, prior_steps=step - 1, signed_at=inputs.signed_at
        )
        final_bytes = self.append_compliance_footer(rendered, inputs, step)

        millis = epoch_millis(inputs.signed_at)
        path = f"signed/{inputs.document_id}/step-{step:03d}-{millis}-complete-signed.pdf"
        written_hash = self.store.put(final_bytes, path)
        expected = sha256_hex_bytes(final_bytes)
        stored_hash = self.store.stream_hash(path)
        if not (written_hash == expected == stored_hash):
            logger.error("Hash mismatch right after writing %s", path)
            raise StorageError(f"Stored artifact {path} does not match the bytes written")

        logger.info("Signed artifact step %d for document %s stored at %s", step, inputs.document_id, path)
        return SignedArtifact(
            path=path,
            sha256=stored_hash,
            size=len(final_bytes),
            fingerprint=document_fingerprint(inputs),
            step=step,
        )
