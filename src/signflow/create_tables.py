import logging

from signflow.database import Base, engine
# Importa todos los modelos para que se registren con Base
from signflow.modules.documents.models import Document, User  # noqa: F401
from signflow.modules.envelopes.models import (  # noqa: F401
    AuditLog,
    DocumentField,
    Envelope,
    EnvelopeSigner,
    Signature,
)
from signflow.modules.ledger.models import SignatureHistory  # noqa: F401
from signflow.modules.notifications.models import Notification  # noqa: F401

logger = logging.getLogger(__name__)


def create_tables(bind=None):
    """Crea todas las tablas en la base de datos"""
    bind = bind or engine
    logger.info("Creating tables: %s", ", ".join(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    create_tables()
