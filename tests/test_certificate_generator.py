import io

import pytest
from PyPDF2 import PdfReader

from signflow.errors import NotFoundError, NotReadyError
from signflow.modules.certificates.services.certificate_generator import CertificateGenerator
from signflow.modules.signing.services.signing_engine import SignatureMark


def complete(machine, owner, notifier, envelope):
    env = machine.send_envelope(envelope.id, owner.id)
    for signer in env.signers:
        machine.verify_otp(signer.signing_link, notifier.latest_otp(signer.email))
        machine.submit_signature(signer.signing_link, SignatureMark(text=signer.name), consent=True)
    return env


def test_certificado_requiere_sobre_completado(db, store, clock, owner, two_signer_envelope):
    generator = CertificateGenerator(db, store, "IN", clock)
    with pytest.raises(NotReadyError):
        generator.generate_completion_certificate(two_signer_envelope.id)


def test_certificado_de_sobre_inexistente(db, store, clock):
    with pytest.raises(NotFoundError):
        CertificateGenerator(db, store, "IN", clock).generate_completion_certificate("missing")


def test_certificado_de_otro_propietario(db, store, clock, machine, owner, notifier, two_signer_envelope):
    env = complete(machine, owner, notifier, two_signer_envelope)
    with pytest.raises(NotFoundError):
        CertificateGenerator(db, store, "IN", clock).generate_completion_certificate(env.id, owner_id="other")


def test_certificado_de_sobre_completado(db, store, clock, machine, owner, notifier, document,
                                         two_signer_envelope):
    env = complete(machine, owner, notifier, two_signer_envelope)
    data = CertificateGenerator(db, store, "IN", clock).generate_completion_certificate(env.id, owner.id)
    assert data.startswith(b"%PDF")

    reader = PdfReader(io.BytesIO(data))
    text = "\n".join(page.extract_text() for page in reader.pages)
    assert "COMPLETION CERTIFICATE" in text
    assert env.id in text
    assert document.original_hash in text
    assert document.complete_signed_pdf_hash in text
    assert "a@example.com" in text and "b@example.com" in text
    assert "SIGNED" in text and "COMPLETED" in text
    assert "matches recorded hash: YES" in text
