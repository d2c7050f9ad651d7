from fastapi import APIRouter, Depends, Response

from signflow.modules.auth.services.auth_service import AuthService
from signflow.modules.envelopes.dependencies import get_state_machine
from signflow.modules.envelopes.models import SIGNABLE_STATUSES
from signflow.modules.envelopes.models.signer import EnvelopeSigner
from signflow.modules.envelopes.services.envelope_state_machine import EnvelopeStateMachine, RequestContext
from signflow.modules.signing.dependencies import request_context, require_signer_session
from signflow.modules.signing.schemas.signing_schemas import (
    DeclineRequest,
    MessageResponse,
    OtpVerifyRequest,
    PlacementOut,
    SignerSessionResponse,
    SignerSessionStatus,
    SignRequest,
    SignResponse,
    SigningViewResponse,
)
from signflow.modules.signing.services.signing_engine import Placement, SignatureMark, decode_signature_image

router = APIRouter(prefix="/signing", tags=["signing"])


@router.get("/{link}", response_model=SigningViewResponse)
def open_signing_link(
    link: str,
    context: RequestContext = Depends(request_context),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    view = machine.open_signing_link(link, context)
    placement = PlacementOut(**view.placement.to_dict()) if view.placement else None
    return SigningViewResponse(
        envelope_id=view.envelope.id,
        envelope_status=view.envelope.status,
        subject=view.envelope.subject,
        message=view.envelope.message,
        document_name=view.document.original_name,
        signer_name=view.signer.name,
        signer_email=view.signer.email,
        already_signed=view.already_signed,
        declined=view.signer.declined_at is not None,
        otp_verified=view.signer.otp_verified,
        placement=placement,
        consent_text=view.consent_text,
        legal_notice=view.legal_notice,
    )


@router.post("/{link}/otp", response_model=MessageResponse)
def request_otp(
    link: str,
    context: RequestContext = Depends(request_context),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    machine.request_otp(link, context)
    return MessageResponse(message="A new verification code has been sent")


@router.post("/{link}/verify", response_model=SignerSessionResponse)
def verify_otp(
    link: str,
    payload: OtpVerifyRequest,
    context: RequestContext = Depends(request_context),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    machine.verify_otp(link, payload.code, context)
    signer = machine.signer_for_link(link)
    token = AuthService.create_signer_session(machine.db, signer, machine.clock())
    return SignerSessionResponse(verified=True, session_token=token, expires_at=signer.session_expiry)


@router.get("/{link}/session", response_model=SignerSessionStatus)
def session_status(
    link: str,
    signer: EnvelopeSigner = Depends(require_signer_session),
):
    can_sign = (
        signer.is_signing_party
        and not signer.has_acted
        and signer.envelope.status in SIGNABLE_STATUSES
    )
    return SignerSessionStatus(active=True, expires_at=signer.session_expiry, can_sign=can_sign)


@router.post("/{link}/session/end", response_model=MessageResponse)
def end_session(
    link: str,
    signer: EnvelopeSigner = Depends(require_signer_session),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    AuthService.end_signer_session(machine.db, signer)
    return MessageResponse(message="Signer session ended")


@router.post("/{link}/sign", response_model=SignResponse)
def sign(
    link: str,
    payload: SignRequest,
    signer: EnvelopeSigner = Depends(require_signer_session),
    context: RequestContext = Depends(request_context),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    if payload.signature_image:
        mark = SignatureMark(image=decode_signature_image(payload.signature_image), signer_name=signer.name)
    else:
        mark = SignatureMark(text=payload.signature_text, signer_name=signer.name)
    placement = Placement(**payload.placement.model_dump()) if payload.placement else None

    result = machine.submit_signature(
        link,
        mark,
        consent=payload.consent,
        placement=placement,
        suppress_mark_metadata=payload.suppress_mark_metadata,
        context=context,
        device_traits=payload.device_traits,
    )
    return SignResponse(
        signed_at=result.signed_at,
        artifact_hash=result.artifact_hash,
        step=result.step,
        envelope_status=result.envelope_status,
    )


@router.post("/{link}/decline", response_model=MessageResponse)
def decline(
    link: str,
    payload: DeclineRequest,
    signer: EnvelopeSigner = Depends(require_signer_session),
    context: RequestContext = Depends(request_context),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    machine.decline_signing(link, payload.reason, context)
    return MessageResponse(message="The envelope has been declined")


@router.get("/{link}/download")
def download(
    link: str,
    signer: EnvelopeSigner = Depends(require_signer_session),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
):
    artifact = machine.get_signed_artifact(signing_link=link)
    return Response(
        content=artifact.data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "X-Content-SHA256": artifact.sha256,
        },
    )
