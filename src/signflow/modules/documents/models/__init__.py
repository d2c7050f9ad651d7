from .document import Document
from .user import User, UserRole

__all__ = ['Document', 'User', 'UserRole']
