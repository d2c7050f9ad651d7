from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from signflow.config import settings
from signflow.database import get_db
from signflow.modules.auth.controllers.auth_controller import get_current_user
from signflow.modules.auth.dependencies import require_permission
from signflow.modules.certificates.services.certificate_generator import CertificateGenerator
from signflow.modules.documents.models.user import User
from signflow.modules.documents.services.permission import DOWNLOAD, MANAGE_FIELDS, SEND, VOID
from signflow.modules.envelopes.dependencies import get_state_machine
from signflow.modules.envelopes.schemas.envelope_schemas import (
    AuditLogResponse,
    EnvelopeCreate,
    EnvelopeResponse,
    FieldCreate,
    FieldResponse,
    FieldUpdate,
    VoidRequest,
)
from signflow.modules.envelopes.services.envelope_state_machine import (
    EnvelopeStateMachine,
    FieldSpec,
    SignerSpec,
)
from signflow.modules.storage.dependencies import get_content_store
from signflow.modules.storage.services.content_store import ContentStore

router = APIRouter(prefix="/envelopes", tags=["envelopes"])


def _field_spec(payload: FieldCreate) -> FieldSpec:
    return FieldSpec(
        type=payload.type,
        page=payload.page,
        x=payload.x,
        y=payload.y,
        width=payload.width,
        height=payload.height,
        signer_email=payload.signer_email,
        signer_id=payload.signer_id,
        required=payload.required,
        label=payload.label,
    )


def _pdf_response(data: bytes, filename: str, sha256: str = None) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if sha256:
        headers["X-Content-SHA256"] = sha256
    return Response(content=data, media_type="application/pdf", headers=headers)


@router.post("", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
def create_envelope(
    payload: EnvelopeCreate,
    current_user: User = Depends(require_permission(SEND)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.create_envelope(
        owner_id=current_user.id,
        document_id=payload.document_id,
        signers=[SignerSpec(s.email, s.name, s.role, s.routing_order) for s in payload.signers],
        fields=[_field_spec(f) for f in payload.fields],
        subject=payload.subject,
        message=payload.message,
    )


@router.get("", response_model=List[EnvelopeResponse])
def list_envelopes(
    current_user: User = Depends(get_current_user),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.list_envelopes(current_user.id)


@router.get("/{envelope_id}", response_model=EnvelopeResponse)
def get_envelope(
    envelope_id: str,
    current_user: User = Depends(get_current_user),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.get_envelope(envelope_id, current_user.id)


@router.post("/{envelope_id}/send", response_model=EnvelopeResponse)
def send_envelope(
    envelope_id: str,
    current_user: User = Depends(require_permission(SEND)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.send_envelope(envelope_id, current_user.id)


@router.post("/{envelope_id}/void", response_model=EnvelopeResponse)
def void_envelope(
    envelope_id: str,
    payload: VoidRequest,
    current_user: User = Depends(require_permission(VOID)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.void_envelope(envelope_id, current_user.id, payload.reason)


@router.post("/{envelope_id}/fields", response_model=FieldResponse, status_code=status.HTTP_201_CREATED)
def add_field(
    envelope_id: str,
    payload: FieldCreate,
    current_user: User = Depends(require_permission(MANAGE_FIELDS)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.add_field(envelope_id, current_user.id, _field_spec(payload))


@router.patch("/{envelope_id}/fields/{field_id}", response_model=FieldResponse)
def update_field(
    envelope_id: str,
    field_id: str,
    payload: FieldUpdate,
    current_user: User = Depends(require_permission(MANAGE_FIELDS)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return machine.update_field(envelope_id, current_user.id, field_id, payload.model_dump(exclude_unset=True))


@router.delete("/{envelope_id}/fields/{field_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_field(
    envelope_id: str,
    field_id: str,
    current_user: User = Depends(require_permission(MANAGE_FIELDS)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    machine.delete_field(envelope_id, current_user.id, field_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{envelope_id}/audit", response_model=List[AuditLogResponse])
def list_audit_trail(
    envelope_id: str,
    current_user: User = Depends(get_current_user),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    return [AuditLogResponse.from_log(log) for log in machine.list_audit_trail(envelope_id, current_user.id)]


@router.get("/{envelope_id}/download")
def download_signed(
    envelope_id: str,
    current_user: User = Depends(require_permission(DOWNLOAD)),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    artifact = machine.get_signed_artifact(envelope_id=envelope_id, owner_id=current_user.id)
    return _pdf_response(artifact.data, artifact.filename, artifact.sha256)


@router.get("/{envelope_id}/certificate")
def download_certificate(
    envelope_id: str,
    current_user: User = Depends(require_permission(DOWNLOAD)),
    db: Session = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    generator = CertificateGenerator(db, store, settings.COMPLIANCE_JURISDICTION)
    data = generator.generate_completion_certificate(envelope_id, owner_id=current_user.id)
    return _pdf_response(data, f"certificate-{envelope_id}.pdf")
