from .signature_history import SignatureHistory

__all__ = ['SignatureHistory']
