from typing import List, Optional

from sqlalchemy.orm import Session

from signflow.modules.documents.models.document import Document
from signflow.modules.envelopes.models.envelope import Envelope
from signflow.modules.envelopes.models.field import DocumentField
from signflow.modules.envelopes.models.signer import EnvelopeSigner


class EnvelopeRepository:
    """Puerto de persistencia del núcleo: todo acceso a filas pasa por aquí."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.db.get(Document, document_id)

    def lock_document(self, document_id: str) -> Optional[Document]:
        # FOR UPDATE es ignorado por SQLite; en PostgreSQL bloquea la fila
        return (
            self.db.query(Document)
            .filter(Document.id == document_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_envelope(self, envelope_id: str) -> Optional[Envelope]:
        return self.db.get(Envelope, envelope_id)

    def list_envelopes_for_owner(self, owner_id: str) -> List[Envelope]:
        return (
            self.db.query(Envelope)
            .filter(Envelope.owner_id == owner_id)
            .order_by(Envelope.created_at.desc())
            .all()
        )

    def get_signer_by_link(self, signing_link: str) -> Optional[EnvelopeSigner]:
        if not signing_link:
            return None
        return (
            self.db.query(EnvelopeSigner)
            .filter(EnvelopeSigner.signing_link == signing_link)
            .first()
        )

    def get_field(self, envelope_id: str, field_id: str) -> Optional[DocumentField]:
        return (
            self.db.query(DocumentField)
            .filter(DocumentField.envelope_id == envelope_id, DocumentField.id == field_id)
            .first()
        )

    def fields_for_envelope(self, envelope_id: str) -> List[DocumentField]:
        return (
            self.db.query(DocumentField)
            .filter(DocumentField.envelope_id == envelope_id)
            .order_by(DocumentField.created_at.asc())
            .all()
        )

    def add(self, *objects) -> None:
        self.db.add_all(objects)

    def delete(self, obj) -> None:
        self.db.delete(obj)

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def reload(self) -> None:
        """Descarta el estado en memoria para leer lo último confirmado."""
        self.db.expire_all()
