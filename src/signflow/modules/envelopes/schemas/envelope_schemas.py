from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from signflow.modules.envelopes.models import EnvelopeStatus, FieldType, SignerRole


class SignerCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    role: SignerRole = SignerRole.SIGNER
    routing_order: int = Field(default=1, ge=1)


class FieldCreate(BaseModel):
    type: FieldType
    page: int
    x: float
    y: float
    width: float
    height: float
    signer_email: Optional[EmailStr] = None
    signer_id: Optional[str] = None
    required: bool = True
    label: Optional[str] = None

    @model_validator(mode="after")
    def check_signer(self):
        if not self.signer_email and not self.signer_id:
            raise ValueError("signer_email or signer_id is required")
        return self


class FieldUpdate(BaseModel):
    type: Optional[FieldType] = None
    page: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    signer_email: Optional[EmailStr] = None
    signer_id: Optional[str] = None
    required: Optional[bool] = None
    label: Optional[str] = None


class EnvelopeCreate(BaseModel):
    document_id: str
    subject: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = None
    signers: List[SignerCreate] = Field(min_length=1)
    fields: List[FieldCreate] = []


class VoidRequest(BaseModel):
    reason: Optional[str] = None


class FieldResponse(BaseModel):
    id: str
    signer_id: str
    type: FieldType
    page: int
    x: float
    y: float
    width: float
    height: float
    required: bool
    label: Optional[str] = None

    class Config:
        from_attributes = True


class SignerResponse(BaseModel):
    id: str
    email: str
    name: str
    role: SignerRole
    routing_order: int
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None

    class Config:
        from_attributes = True


class EnvelopeResponse(BaseModel):
    id: str
    document_id: str
    status: EnvelopeStatus
    subject: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    signers: List[SignerResponse] = []
    fields: List[FieldResponse] = []

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    event: str
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_log(cls, log) -> "AuditLogResponse":
        return cls(
            id=log.id,
            timestamp=log.timestamp,
            event=log.event.value,
            actor_email=log.actor_email,
            actor_role=log.actor_role,
            ip_address=log.ip_address,
            user_agent=log.user_agent,
            details=log.details,
        )
