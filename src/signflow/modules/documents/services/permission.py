from typing import Dict, FrozenSet

from signflow.modules.documents.models.user import UserRole

UPLOAD = "upload"
SEND = "send"
MANAGE_FIELDS = "manage_fields"
VOID = "void"
DOWNLOAD = "download"
VIEW_ALL = "view_all"

_OWNER_ACTIONS = frozenset({UPLOAD, SEND, MANAGE_FIELDS, VOID, DOWNLOAD})

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.USER: _OWNER_ACTIONS,
    UserRole.ADMIN: _OWNER_ACTIONS | {VIEW_ALL},
}


def can_perform_action(user_role: UserRole, action: str) -> bool:
    return action in ROLE_PERMISSIONS.get(user_role, frozenset())
