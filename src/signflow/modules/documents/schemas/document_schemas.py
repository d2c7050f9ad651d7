from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    original_name: str
    mime_type: str
    size_bytes: int
    original_hash: str
    complete_signed_pdf_hash: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SignatureStepResponse(BaseModel):
    step: int
    signer_name: str
    signer_email: str
    complete_signed_pdf_hash: str
    signed_at: datetime

    class Config:
        from_attributes = True


class SignatureHistoryResponse(BaseModel):
    document_id: str
    original_hash: str
    current_hash: Optional[str] = None
    integrity_valid: bool
    steps: List[SignatureStepResponse]


class IntegrityResponse(BaseModel):
    document_id: str
    valid: bool
    current_hash: str
    recorded_hash: str
    broken_steps: List[int] = []
