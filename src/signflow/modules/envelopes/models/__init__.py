from .audit_log import AuditEvent, AuditLog
from .envelope import SIGNABLE_STATUSES, TERMINAL_STATUSES, VERIFIABLE_STATUSES, Envelope, EnvelopeStatus
from .field import DocumentField, FieldType
from .signature import Signature
from .signer import EnvelopeSigner, SignerRole

__all__ = [
    'AuditEvent', 'AuditLog', 'Envelope', 'EnvelopeStatus', 'SIGNABLE_STATUSES',
    'TERMINAL_STATUSES', 'VERIFIABLE_STATUSES', 'DocumentField', 'FieldType', 'Signature',
    'EnvelopeSigner', 'SignerRole',
]
