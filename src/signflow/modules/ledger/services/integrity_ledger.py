import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from signflow.errors import IntegrityViolation, NotFoundError
from signflow.modules.documents.models.document import Document
from signflow.modules.ledger.models.signature_history import SignatureHistory
from signflow.modules.storage.services.content_store import ContentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignerSnapshot:
    name: str
    email: str


@dataclass(frozen=True)
class IntegrityCheck:
    valid: bool
    current_hash: str
    recorded_hash: str
    path: str


class IntegrityLedger:
    """Historial ordenado de pasos de firma por documento.

    ``append_step`` no hace commit: el paso se confirma junto con el resto de
    la transacción de firma. La restricción única (document_id, step) impide
    números de paso duplicados si dos procesos firman a la vez.
    """

    def __init__(self, db: Session, store: ContentStore):
        self.db = db
        self.store = store

    def count_steps(self, document_id: str) -> int:
        return (
            self.db.query(func.count(SignatureHistory.id))
            .filter(SignatureHistory.document_id == document_id)
            .scalar()
        ) or 0

    def append_step(self, document_id: str, signer: SignerSnapshot, artifact_path: str,
                    artifact_hash: str, signed_at: datetime) -> SignatureHistory:
        step = self.count_steps(document_id) + 1
        entry = SignatureHistory(
            document_id=document_id,
            step=step,
            signer_name=signer.name,
            signer_email=signer.email,
            complete_signed_pdf_path=artifact_path,
            complete_signed_pdf_hash=artifact_hash,
            signed_at=signed_at,
        )
        self.db.add(entry)
        self.db.flush()
        logger.info("Ledger step %d appended for document %s", step, document_id)
        return entry

    def history(self, document_id: str) -> List[SignatureHistory]:
        return (
            self.db.query(SignatureHistory)
            .filter(SignatureHistory.document_id == document_id)
            .order_by(SignatureHistory.step.asc())
            .all()
        )

    def verify_current(self, document_id: str) -> IntegrityCheck:
        """Recalcula el hash del archivo vigente y lo compara con el registrado.

        Antes del primer paso se verifica el original contra ``original_hash``.
        """
        document = self.db.get(Document, document_id)
        if document is None:
            raise NotFoundError("Document not found")

        path = document.current_path
        recorded = document.current_hash
        current = self.store.stream_hash(path)
        if current != recorded:
            logger.critical(
                "INTEGRITY VIOLATION document=%s path=%s recorded=%s current=%s",
                document_id, path, recorded, current,
            )
            raise IntegrityViolation(
                "Stored document does not match its recorded hash",
                document_id=document_id,
            )
        return IntegrityCheck(valid=True, current_hash=current, recorded_hash=recorded, path=path)

    def verify_chain(self, document_id: str) -> List[int]:
        """Devuelve los pasos cuyo artefacto ya no coincide con su hash (lista vacía si todo está bien)."""
        broken = []
        for entry in self.history(document_id):
            try:
                current = self.store.stream_hash(entry.complete_signed_pdf_path)
            except NotFoundError:
                current = None
            if current != entry.complete_signed_pdf_hash:
                broken.append(entry.step)
        if broken:
            logger.critical("INTEGRITY VIOLATION document=%s broken steps=%s", document_id, broken)
        return broken
