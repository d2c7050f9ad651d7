from fastapi import Depends
from sqlalchemy.orm import Session

from signflow.config import settings
from signflow.database import get_db
from signflow.modules.envelopes.services.envelope_state_machine import EnvelopeStateMachine
from signflow.modules.notifications.repositories.notification_repository import NotificationRepository
from signflow.modules.notifications.services.notification_service import NotificationService
from signflow.modules.storage.dependencies import get_content_store
from signflow.modules.storage.services.content_store import ContentStore


def get_state_machine(db: Session = Depends(get_db),
                      store: ContentStore = Depends(get_content_store)) -> EnvelopeStateMachine:
    notifier = NotificationService(NotificationRepository(db), settings.NOTIFICATION_RETRY_ATTEMPTS)
    return EnvelopeStateMachine(db, store, notifier=notifier)
