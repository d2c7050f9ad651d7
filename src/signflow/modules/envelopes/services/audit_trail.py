import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from signflow.modules.envelopes.models.audit_log import AuditEvent, AuditLog
from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class AuditTrail:
    """Registro de auditoría de solo-anexado.

    ``record`` no confirma: cada evento viaja en la misma transacción que el
    cambio de estado que lo provoca.
    """

    def __init__(self, db: Session, clock: Callable = utcnow):
        self.db = db
        self.clock = clock

    def record(self, envelope_id: str, event: AuditEvent, actor_email: Optional[str] = None,
               actor_role: Optional[str] = None, ip_address: Optional[str] = None,
               user_agent: Optional[str] = None, details: Optional[dict] = None) -> AuditLog:
        entry = AuditLog(
            envelope_id=envelope_id,
            timestamp=self.clock(),
            event=event,
            actor_email=actor_email,
            actor_role=actor_role,
            ip_address=ip_address,
            user_agent=(user_agent or None) and user_agent[:512],
            details=details or None,
        )
        self.db.add(entry)
        logger.debug("Audit %s envelope=%s actor=%s", event.value, envelope_id, actor_email)
        return entry

    def for_envelope(self, envelope_id: str) -> List[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.envelope_id == envelope_id)
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
            .all()
        )
