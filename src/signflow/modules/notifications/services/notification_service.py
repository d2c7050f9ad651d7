import logging
from typing import Iterable, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from signflow.modules.notifications.models.notification import Notification
from signflow.modules.notifications.repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationTemplate:
    kind = "GENERIC"

    def __init__(self, recipient_email: str, title: str, message: str, link: Optional[str] = None):
        self.recipient_email = recipient_email
        self.title = title
        self.message = message
        self.link = link

    def to_dict(self):
        return {
            'recipient_email': self.recipient_email,
            'kind': self.kind,
            'title': self.title,
            'message': self.message,
            'link': self.link,
        }


class SigningInvitationNotification(NotificationTemplate):
    kind = "SIGNING_INVITATION"

    def __init__(self, signer, document, otp: Optional[str], link: str, envelope_message: Optional[str] = None):
        title = f"Firma solicitada: {document.original_name}"
        parts = [f"Hola {signer.name}, se le ha solicitado firmar '{document.original_name}'."]
        if envelope_message:
            parts.append(envelope_message)
        if otp:
            parts.append(f"Su código de verificación es {otp}.")
        parts.append(f"Abra el enlace para revisar y firmar: {link}")
        super().__init__(signer.email, title, " ".join(parts), link)


class OtpDeliveryNotification(NotificationTemplate):
    kind = "OTP_CODE"

    def __init__(self, signer, document, otp: str, link: str):
        title = "Nuevo código de verificación"
        message = (
            f"Su nuevo código para firmar '{document.original_name}' es {otp}. "
            "Los códigos anteriores ya no son válidos."
        )
        super().__init__(signer.email, title, message, link)


class CompletionNotification(NotificationTemplate):
    kind = "ENVELOPE_COMPLETED"

    def __init__(self, signer, document, download_link: str, certificate_link: str):
        title = f"Documento completado: {document.original_name}"
        message = (
            f"Todas las partes han firmado '{document.original_name}'. "
            f"Descargue el PDF firmado en {download_link} "
            f"y el certificado de finalización en {certificate_link}."
        )
        super().__init__(signer.email, title, message, download_link)


class NotificationService:
    """Entrega de notificaciones internas; es el transporte de invitaciones y OTP.

    Los envíos son best-effort: un fallo se reintenta unas pocas veces y después
    se registra, pero nunca se propaga a la transacción de firma.
    """

    def __init__(self, repository: NotificationRepository, retry_attempts: int = 3):
        self.notification_repository = repository
        self.retry_attempts = max(1, retry_attempts)

    def _deliver(self, template: NotificationTemplate) -> Optional[Notification]:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return self.notification_repository.save(Notification(**template.to_dict()))
            except SQLAlchemyError as exc:
                self.notification_repository.db.rollback()
                logger.warning(
                    "Notification %s to %s failed (attempt %d/%d): %s",
                    template.kind, template.recipient_email, attempt, self.retry_attempts, exc,
                )
        logger.error("Giving up on %s notification to %s", template.kind, template.recipient_email)
        return None

    def send_signing_invitation(self, signer, document, otp: Optional[str], link: str,
                                envelope_message: Optional[str] = None) -> Optional[Notification]:
        return self._deliver(SigningInvitationNotification(signer, document, otp, link, envelope_message))

    def send_otp(self, signer, document, otp: str, link: str) -> Optional[Notification]:
        return self._deliver(OtpDeliveryNotification(signer, document, otp, link))

    def send_completion_notification(self, signers: Iterable, document,
                                     links: Mapping[str, Mapping[str, str]]) -> List[Notification]:
        """``links`` va indexado por id de firmante: {"download": ..., "certificate": ...}."""
        sent = []
        for signer in signers:
            signer_links = links.get(signer.id, {})
            notif = self._deliver(CompletionNotification(
                signer,
                document,
                download_link=signer_links.get("download", ""),
                certificate_link=signer_links.get("certificate", ""),
            ))
            if notif is not None:
                sent.append(notif)
        return sent

    def get_notifications(self, email: str, unread_only: bool = False) -> List[Notification]:
        return self.notification_repository.find_by_recipient(email, unread_only)

    def mark_as_read(self, notification_id: int, recipient_email: Optional[str] = None) -> Optional[Notification]:
        notif = self.notification_repository.find_by_id(notification_id)
        if notif is None or (recipient_email is not None and notif.recipient_email != recipient_email):
            return None
        return self.notification_repository.update(notification_id, {'read': True})
