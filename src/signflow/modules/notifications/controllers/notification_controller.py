from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from signflow.config import settings
from signflow.database import get_db
from signflow.modules.auth.controllers.auth_controller import get_current_user
from signflow.modules.documents.models.user import User
from signflow.modules.notifications.models.schemas import NotificationResponse
from signflow.modules.notifications.repositories.notification_repository import NotificationRepository
from signflow.modules.notifications.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    repo = NotificationRepository(db)
    return NotificationService(repo, settings.NOTIFICATION_RETRY_ATTEMPTS)


@router.get(
    "",
    response_model=List[NotificationResponse],
    summary="Notificaciones del usuario autenticado"
)
def list_notifications(
    unread: bool = Query(False, description="Solo notificaciones sin leer"),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return service.get_notifications(current_user.email, unread_only=unread)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Marcar notificación como leída"
)
def mark_notification_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    notif = service.mark_as_read(notification_id, current_user.email)
    if not notif:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    return notif
