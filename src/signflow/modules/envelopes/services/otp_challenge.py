import hmac
import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class OtpChallenge:
    """Códigos numéricos de un solo uso guardados en el registro del firmante.

    ``generate`` reemplaza el código anterior; ``verify`` falla cerrado y no
    consume el código, así que puede repetirse mientras no expire.
    """

    def __init__(self, ttl_minutes: int = 10, length: int = 6, clock: Callable = utcnow):
        self.ttl = timedelta(minutes=ttl_minutes)
        self.length = length
        self.clock = clock

    def _new_code(self) -> str:
        return "".join(str(secrets.randbelow(10)) for _ in range(self.length))

    def generate(self, signer) -> str:
        code = self._new_code()
        signer.otp_code = code
        signer.otp_expiry = self.clock() + self.ttl
        signer.otp_verified = False
        logger.info("OTP issued for signer %s (expires %s)", signer.id, signer.otp_expiry.isoformat())
        return code

    def verify(self, signer, submitted_code: Optional[str]) -> bool:
        stored = signer.otp_code
        expiry = signer.otp_expiry
        if not stored or expiry is None or not submitted_code:
            return False
        if self.clock() > expiry:
            logger.info("Expired OTP presented for signer %s", signer.id)
            return False
        return hmac.compare_digest(
            str(submitted_code).strip().encode("utf-8"),
            stored.encode("utf-8"),
        )

    @staticmethod
    def clear(signer) -> None:
        signer.otp_code = None
        signer.otp_expiry = None
