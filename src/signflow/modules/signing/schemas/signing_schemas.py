from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from signflow.modules.envelopes.models import EnvelopeStatus


class PlacementIn(BaseModel):
    page: int = Field(ge=1)
    x: float
    y: float
    width: float
    height: float


class PlacementOut(PlacementIn):
    pass


class SigningViewResponse(BaseModel):
    envelope_id: str
    envelope_status: EnvelopeStatus
    subject: Optional[str] = None
    message: Optional[str] = None
    document_name: str
    signer_name: str
    signer_email: str
    already_signed: bool
    declined: bool
    otp_verified: bool
    placement: Optional[PlacementOut] = None
    consent_text: str
    legal_notice: str


class OtpVerifyRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class SignerSessionResponse(BaseModel):
    verified: bool
    session_token: str
    expires_at: datetime


class SignerSessionStatus(BaseModel):
    active: bool
    expires_at: datetime
    can_sign: bool


class SignRequest(BaseModel):
    consent: bool
    signature_image: Optional[str] = None
    signature_text: Optional[str] = Field(default=None, max_length=200)
    placement: Optional[PlacementIn] = None
    suppress_mark_metadata: bool = False
    device_traits: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_mark(self):
        if not self.signature_image and not (self.signature_text or "").strip():
            raise ValueError("signature_image or signature_text is required")
        return self


class SignResponse(BaseModel):
    signed_at: datetime
    artifact_hash: str
    step: int
    envelope_status: EnvelopeStatus


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
