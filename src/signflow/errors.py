"""Taxonomía de errores del núcleo de firma.

Cada error lleva un ``kind`` legible por máquina y un mensaje para humanos;
la capa HTTP los traduce a respuestas estructuradas sin filtrar detalles
internos.
"""


class SignFlowError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(SignFlowError):
    """Bad field geometry or malformed request shape."""
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, errors=None, **details):
        super().__init__(message, **details)
        self.errors = list(errors or [])

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class NoFieldAssigned(ValidationError):
    kind = "no_field_assigned"


class InvalidSignatureImage(ValidationError):
    kind = "invalid_signature_image"


class PageNotFound(ValidationError):
    kind = "page_not_found"


class NotFoundError(SignFlowError):
    kind = "not_found"
    status_code = 404


class StateConflictError(SignFlowError):
    """Operation is not valid for the current envelope/signer status."""
    kind = "state_conflict"
    status_code = 409


class NotReadyError(StateConflictError):
    kind = "not_ready"


class AuthChallengeError(SignFlowError):
    """OTP or signer session rejected."""
    kind = "auth_challenge_failed"
    status_code = 401


class IntegrityViolation(SignFlowError):
    """Stored artifact no longer matches its recorded hash."""
    kind = "integrity_violation"
    status_code = 500


class StorageError(SignFlowError):
    kind = "storage_error"
    status_code = 503
