import logging

from fastapi import Depends, HTTPException, status

from signflow.modules.auth.controllers.auth_controller import get_current_user
from signflow.modules.documents.models.user import User
from signflow.modules.documents.services.permission import can_perform_action

logger = logging.getLogger(__name__)


def require_permission(action: str):
    """Dependency que exige que el rol del usuario autenticado permita ``action``"""
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.is_active or not can_perform_action(current_user.role, action):
            logger.warning("User %s denied action '%s'", current_user.id, action)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User with role '{current_user.role.value}' cannot perform '{action}'"
            )
        return current_user
    return dependency
