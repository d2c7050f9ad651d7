import io
import logging
import os
import uuid
from typing import List

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from sqlalchemy.orm import Session

from signflow.errors import NotFoundError, ValidationError
from signflow.modules.documents.models.document import Document
from signflow.modules.documents.models.user import User
from signflow.modules.documents.services.permission import VIEW_ALL, can_perform_action
from signflow.modules.storage.services.content_store import ContentStore

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


class DocumentService:

    def __init__(self, db: Session, store: ContentStore):
        self.db = db
        self.store = store

    def get_documents_by_user(self, user_id: str) -> List[Document]:
        """
        Obtiene los documentos visibles para un usuario (todos si es admin)
        """
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        query = self.db.query(Document)
        if not can_perform_action(user.role, VIEW_ALL):
            query = query.filter(Document.owner_id == user_id)
        return query.order_by(Document.created_at.desc()).all()

    def get_document(self, document_id: str, user_id: str) -> Document:
        document = self.db.get(Document, document_id)
        user = self.db.get(User, user_id)
        if document is None or user is None:
            raise NotFoundError("Document not found")
        if document.owner_id != user_id and not can_perform_action(user.role, VIEW_ALL):
            # No revelamos la existencia de documentos ajenos
            raise NotFoundError("Document not found")
        return document

    def upload_document(
        self,
        user_id: str,
        file_contents: bytes,
        filename: str,
        content_type: str,
        max_file_size: int = 10 * 1024 * 1024
    ) -> Document:
        """
        Procesa y guarda un documento completo:
        - Valida el archivo
        - Guarda el archivo en el almacén con una ruta canónica
        - Calcula el hash original (inmutable)
        - Crea el registro en BD
        """
        if self.db.get(User, user_id) is None:
            raise NotFoundError("User not found")

        self._validate_file(file_contents, filename, content_type, max_file_size)

        document_id = str(uuid.uuid4())
        storage_path = f"documents/{document_id}/original.pdf"
        original_hash = self.store.put(file_contents, storage_path)

        document = Document(
            id=document_id,
            owner_id=user_id,
            original_name=os.path.basename(filename),
            mime_type=PDF_MIME_TYPE,
            size_bytes=len(file_contents),
            storage_path=storage_path,
            original_hash=original_hash,
        )
        self.db.add(document)
        self.db.commit()
        logger.info("Document %s uploaded by %s (%d bytes)", document.id, user_id, len(file_contents))
        return document

    @staticmethod
    def _validate_file(file_contents: bytes, filename: str, content_type: str, max_file_size: int):
        """Valida el archivo subido"""

        if content_type != PDF_MIME_TYPE:
            raise ValidationError("The file must be a PDF")

        if not filename or not filename.lower().endswith(".pdf"):
            raise ValidationError("The file extension must be .pdf")

        if not file_contents:
            raise ValidationError("The file is empty")

        if len(file_contents) > max_file_size:
            raise ValidationError(f"Maximum file size is {max_file_size // (1024 * 1024)} MB")

        # Validar integridad del PDF
        try:
            reader = PdfReader(io.BytesIO(file_contents))
            if len(reader.pages) == 0:
                raise ValidationError("The PDF has no pages")
        except (PdfReadError, ValueError, KeyError, TypeError) as exc:
            raise ValidationError("Invalid or damaged PDF") from exc
