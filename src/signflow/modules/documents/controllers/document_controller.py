from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.orm import Session

from signflow.config import settings
from signflow.database import get_db
from signflow.errors import IntegrityViolation
from signflow.modules.auth.controllers.auth_controller import get_current_user
from signflow.modules.auth.dependencies import require_permission
from signflow.modules.documents.models.user import User
from signflow.modules.documents.schemas.document_schemas import (
    DocumentResponse,
    IntegrityResponse,
    SignatureHistoryResponse,
    SignatureStepResponse,
)
from signflow.modules.documents.services.document_service import DocumentService
from signflow.modules.documents.services.permission import UPLOAD
from signflow.modules.envelopes.dependencies import get_state_machine
from signflow.modules.envelopes.services.envelope_state_machine import EnvelopeStateMachine
from signflow.modules.ledger.services.integrity_ledger import IntegrityLedger
from signflow.modules.storage.dependencies import get_content_store
from signflow.modules.storage.services.content_store import ContentStore

router = APIRouter(prefix="/documents", tags=["documents"])


def get_document_service(db: Session = Depends(get_db),
                         store: ContentStore = Depends(get_content_store)) -> DocumentService:
    return DocumentService(db, store)


@router.post("/upload", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    current_user: User = Depends(require_permission(UPLOAD)),
    service: DocumentService = Depends(get_document_service),
):
    contents = await file.read()
    return service.upload_document(
        current_user.id, contents, file.filename, file.content_type, settings.MAX_UPLOAD_BYTES
    )


@router.get("", response_model=List[DocumentResponse])
def list_documents(
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
):
    return service.get_documents_by_user(current_user.id)


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
):
    return service.get_document(document_id, current_user.id)


@router.get("/{document_id}/history", response_model=SignatureHistoryResponse)
def get_signature_history(
    document_id: str,
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    document = service.get_document(document_id, current_user.id)
    report = machine.get_signature_history(document.id)
    return SignatureHistoryResponse(
        document_id=report.document_id,
        original_hash=report.original_hash,
        current_hash=report.current_hash,
        integrity_valid=report.integrity_valid,
        steps=[SignatureStepResponse.model_validate(s) for s in report.steps],
    )


@router.get("/{document_id}/verify", response_model=IntegrityResponse)
def verify_document(
    document_id: str,
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
    db: Session = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    """Recalcula los hashes; una discrepancia en el archivo vigente responde 500 integrity_violation"""
    document = service.get_document(document_id, current_user.id)
    ledger = IntegrityLedger(db, store)
    check = ledger.verify_current(document.id)
    broken = ledger.verify_chain(document.id)
    if broken:
        raise IntegrityViolation("Signing history contains artifacts that no longer match", steps=broken)
    return IntegrityResponse(
        document_id=document.id,
        valid=check.valid,
        current_hash=check.current_hash,
        recorded_hash=check.recorded_hash,
        broken_steps=broken,
    )
