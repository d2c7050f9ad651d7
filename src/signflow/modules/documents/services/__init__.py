from .document_service import DocumentService
from .permission import can_perform_action

__all__ = ['DocumentService', 'can_perform_action']
