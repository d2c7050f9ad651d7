import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from signflow.modules.envelopes.models.signer import EnvelopeSigner
from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


def expire_stale_credentials(session: Session, now: Optional[datetime] = None) -> int:
    """Borra códigos OTP y sesiones de firmante vencidos. Devuelve cuántos firmantes se tocaron."""
    now = now or utcnow()

    signers = session.query(EnvelopeSigner).filter(
        or_(
            EnvelopeSigner.otp_expiry <= now,
            EnvelopeSigner.session_expiry <= now,
        )
    ).all()

    for signer in signers:
        if signer.otp_expiry is not None and signer.otp_expiry <= now:
            signer.otp_code = None
            signer.otp_expiry = None
        if signer.session_expiry is not None and signer.session_expiry <= now:
            signer.session_token = None
            signer.session_expiry = None
            signer.otp_verified = False

    session.commit()
    if signers:
        logger.info("Expired credentials cleared for %d signers", len(signers))
    return len(signers)
