import io
import logging
from typing import Callable, Optional

from reportlab.lib.colors import Color
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from signflow.errors import IntegrityViolation, NotFoundError, NotReadyError
from signflow.modules.envelopes.models import Envelope, EnvelopeStatus
from signflow.modules.envelopes.services.audit_trail import AuditTrail
from signflow.modules.ledger.services.integrity_ledger import IntegrityLedger
from signflow.modules.signing.services.compliance import format_signing_time, get_compliance_info
from signflow.modules.storage.services.content_store import ContentStore
from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = letter
MARGIN = 50
LINE = 14


class _Writer:
    """Cursor de escritura que salta de página al llegar al margen inferior."""

    def __init__(self, c, title: str):
        self.c = c
        self.title = title
        self.page = 1
        self.y = PAGE_HEIGHT - MARGIN

    def _footer(self):
        self.c.setFont("Helvetica", 8)
        self.c.setFillColor(Color(0.5, 0.5, 0.5))
        self.c.drawRightString(PAGE_WIDTH - MARGIN, MARGIN / 2, f"{self.title} - page {self.page}")

    def ensure(self, height: float):
        if self.y - height < MARGIN:
            self._footer()
            self.c.showPage()
            self.page += 1
            self.y = PAGE_HEIGHT - MARGIN

    def heading(self, text: str, size: int = 13):
        self.ensure(size + 16)
        self.y -= 8
        self.c.setFillColorRGB(0, 0, 0)
        self.c.setFont("Helvetica-Bold", size)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= size + 6

    def line(self, text: str, font: str = "Helvetica", size: int = 10, indent: float = 0,
             grey: bool = False):
        width = PAGE_WIDTH - 2 * MARGIN - indent
        for chunk in simpleSplit(text, font, size, width) or [""]:
            self.ensure(LINE)
            self.c.setFillColor(Color(0.35, 0.35, 0.35) if grey else Color(0, 0, 0))
            self.c.setFont(font, size)
            self.c.drawString(MARGIN + indent, self.y, chunk)
            self.y -= LINE

    def gap(self, amount: float = 8):
        self.y -= amount

    def finish(self):
        self._footer()
        self.c.save()


class CertificateGenerator:
    """Certificado de finalización de un sobre COMPLETED."""

    def __init__(self, db: Session, store: ContentStore, jurisdiction: str = "IN",
                 clock: Callable = utcnow):
        self.db = db
        self.ledger = IntegrityLedger(db, store)
        self.audit = AuditTrail(db, clock)
        self.jurisdiction = jurisdiction
        self.clock = clock

    def _when(self, moment) -> str:
        return format_signing_time(moment, self.jurisdiction) if moment else "-"

    def generate_completion_certificate(self, envelope_id: str, owner_id: Optional[str] = None) -> bytes:
        envelope = self.db.get(Envelope, envelope_id)
        if envelope is None or (owner_id is not None and envelope.owner_id != owner_id):
            raise NotFoundError("Envelope not found")
        if envelope.status != EnvelopeStatus.COMPLETED:
            raise NotReadyError(f"Envelope is {envelope.status.value}; certificate requires COMPLETED")

        document = envelope.document
        try:
            integrity_ok = self.ledger.verify_current(document.id).valid
        except (IntegrityViolation, NotFoundError):
            integrity_ok = False
        broken = self.ledger.verify_chain(document.id)
        steps = self.ledger.history(document.id)
        info = get_compliance_info(self.jurisdiction)

        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=letter)
        c.setTitle(f"Completion certificate {envelope.id}")
        w = _Writer(c, "Completion Certificate")

        w.heading("DOCUMENT SIGNING COMPLETION CERTIFICATE", size=16)
        w.line(f"Certificate ID: {envelope.id}", grey=True)
        w.line(f"Generated: {self._when(self.clock())}", grey=True)
        w.gap()

        w.heading("DOCUMENT INFORMATION")
        w.line(f"Document Name: {document.original_name}")
        w.line(f"Document ID: {document.id}")
        if envelope.subject:
            w.line(f"Subject: {envelope.subject}")
        w.line(f"Owner: {envelope.owner.email if envelope.owner else '-'}")
        w.line(f"Completed: {self._when(envelope.completed_at)}")
        w.gap()

        w.heading("INTEGRITY VERIFICATION")
        w.line("Original Document Hash (SHA-256):")
        w.line(document.original_hash, font="Courier", size=9, indent=10)
        w.line("Final Signed Document Hash (SHA-256):")
        w.line(document.complete_signed_pdf_hash or "-", font="Courier", size=9, indent=10)
        w.line(f"Current file matches recorded hash: {'YES' if integrity_ok else 'NO'}")
        if broken:
            w.line(f"Steps whose artifact no longer matches: {', '.join(str(s) for s in broken)}")
        w.gap()

        w.heading("SIGNERS")
        for signer in envelope.signers:
            w.line(f"{signer.name} <{signer.email}> ({signer.role.value})", font="Helvetica-Bold")
            w.line(f"Signed: {self._when(signer.signed_at)}", indent=10)
            if signer.ip_address:
                w.line(f"IP Address: {signer.ip_address}", indent=10, grey=True)
            if signer.user_agent:
                w.line(f"User Agent: {signer.user_agent}", indent=10, grey=True, size=8)
        w.gap()

        w.heading("SIGNING STEPS")
        for entry in steps:
            w.line(f"Step {entry.step}: {entry.signer_name} <{entry.signer_email}> "
                   f"at {self._when(entry.signed_at)}")
            w.line(entry.complete_signed_pdf_hash, font="Courier", size=8, indent=10)
        w.gap()

        w.heading("AUDIT TRAIL")
        for log in self.audit.for_envelope(envelope.id):
            actor = log.actor_email or log.actor_role or "system"
            w.line(f"{self._when(log.timestamp)}  {log.event.value}  {actor}", size=9)
            if log.ip_address:
                w.line(f"IP: {log.ip_address}", size=8, indent=10, grey=True)
        w.gap()

        w.heading("LEGAL COMPLIANCE")
        w.line(info.legal_notice, size=9)
        w.line("Applicable laws: " + "; ".join(info.applicable_laws), size=9, grey=True)

        w.finish()
        logger.info("Completion certificate generated for envelope %s", envelope.id)
        return buf.getvalue()
