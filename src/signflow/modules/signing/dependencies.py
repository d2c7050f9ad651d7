from typing import Optional

from fastapi import Depends, Header, Request

from signflow.errors import AuthChallengeError
from signflow.modules.auth.services.auth_service import AuthService
from signflow.modules.envelopes.dependencies import get_state_machine
from signflow.modules.envelopes.models.signer import EnvelopeSigner
from signflow.modules.envelopes.services.envelope_state_machine import EnvelopeStateMachine, RequestContext


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def require_signer_session(
    link: str,
    x_signer_session: Optional[str] = Header(default=None),
    machine: EnvelopeStateMachine = Depends(get_state_machine),
) -> EnvelopeSigner:
    """El firmante debe presentar el token emitido tras verificar el OTP"""
    signer = machine.signer_for_link(link)
    if not AuthService.verify_signer_session(signer, x_signer_session, machine.clock()):
        raise AuthChallengeError("A valid signer session is required")
    return signer
