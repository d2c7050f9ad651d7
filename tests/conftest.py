import io
import os
from datetime import datetime, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("COMPLIANCE_JURISDICTION", "IN")

import pytest
from PIL import Image
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from signflow.create_tables import create_tables
from signflow.database import Base
from signflow.modules.documents.models.user import User, UserRole
from signflow.modules.documents.services.document_service import DocumentService
from signflow.modules.envelopes.models import FieldType, SignerRole
from signflow.modules.envelopes.services.envelope_state_machine import (
    EnvelopeStateMachine,
    FieldSpec,
    SignerSpec,
)
from signflow.modules.storage.services.content_store import LocalContentStore
from signflow.utils.locks import LockRegistry


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0):
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)


class RecordingNotifier:
    """Guarda lo que se habría enviado para poder leer los OTP en los tests."""

    def __init__(self):
        self.invitations = []
        self.otps = []
        self.completions = []
        # Todos los códigos entregados, en orden de envío
        self.delivered = []

    def send_signing_invitation(self, signer, document, otp, link, envelope_message=None):
        entry = {"email": signer.email, "otp": otp, "link": link}
        self.invitations.append(entry)
        self.delivered.append(entry)

    def send_otp(self, signer, document, otp, link):
        entry = {"email": signer.email, "otp": otp, "link": link}
        self.otps.append(entry)
        self.delivered.append(entry)

    def send_completion_notification(self, signers, document, links):
        self.completions.append({"emails": [s.email for s in signers], "links": links})

    def latest_otp(self, email: str) -> str:
        for entry in reversed(self.delivered):
            if entry["email"] == email and entry["otp"]:
                return entry["otp"]
        raise AssertionError(f"no OTP sent to {email}")


def make_pdf_bytes(pages: int = 1, text: str = "PDF para test") -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    for i in range(pages):
        c.drawString(50, 750, f"{text} - page {i + 1}")
        c.showPage()
    c.save()
    buf.seek(0)
    return buf.read()


def make_png_bytes(size=(120, 40), fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", size, (255, 255, 255))
    for x in range(10, size[0] - 10):
        img.putpixel((x, size[1] // 2), (0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(tmp_path):
    return LocalContentStore(str(tmp_path / "store"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def locks():
    return LockRegistry()


@pytest.fixture
def machine(db, store, notifier, clock, locks):
    return EnvelopeStateMachine(db, store, notifier=notifier, locks=locks, clock=clock)


@pytest.fixture
def owner(db):
    user = User(name="Owner", email="owner@example.com", password_hash="x", role=UserRole.USER)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def document(db, store, owner):
    service = DocumentService(db, store)
    return service.upload_document(owner.id, make_pdf_bytes(pages=2), "contract.pdf", "application/pdf")


def signature_field(email: str, page: int = 1, x: float = 0.1, y: float = 0.1) -> FieldSpec:
    return FieldSpec(FieldType.SIGNATURE, page, x, y, 0.3, 0.08, signer_email=email)


@pytest.fixture
def two_signer_envelope(machine, owner, document):
    return machine.create_envelope(
        owner.id,
        document.id,
        signers=[
            SignerSpec("a@example.com", "Alice", SignerRole.SIGNER, 1),
            SignerSpec("b@example.com", "Bob", SignerRole.SIGNER, 2),
        ],
        fields=[
            signature_field("a@example.com", page=1, y=0.1),
            signature_field("b@example.com", page=1, y=0.5),
        ],
        subject="Contrato",
    )
