from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from signflow.modules.notifications.models.notification import Notification


class NotificationRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def save(self, notification: Notification) -> Notification:
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def find_by_recipient(self, email: str, unread_only: bool = False) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.recipient_email == email)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def find_by_id(self, notification_id: int) -> Optional[Notification]:
        return self.db.get(Notification, notification_id)

    def update(self, notification_id: int, data: Dict) -> Optional[Notification]:
        notif = self.db.get(Notification, notification_id)
        if not notif:
            return None
        for field, value in data.items():
            setattr(notif, field, value)
        self.db.commit()
        self.db.refresh(notif)
        return notif
