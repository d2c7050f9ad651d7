import hashlib
import io

import pytest
from PyPDF2 import PdfReader

from conftest import make_png_bytes, signature_field
from signflow.errors import (
    AuthChallengeError,
    IntegrityViolation,
    NoFieldAssigned,
    NotFoundError,
    NotReadyError,
    StateConflictError,
    ValidationError,
)
from signflow.modules.envelopes.models import AuditEvent, EnvelopeStatus, FieldType, SignerRole
from signflow.modules.envelopes.services.envelope_state_machine import FieldSpec, RequestContext, SignerSpec
from signflow.modules.signing.services.signing_engine import Placement, SignatureMark


def verify(machine, notifier, signer):
    assert machine.verify_otp(signer.signing_link, notifier.latest_otp(signer.email))


def sign(machine, signer, text=None, **kwargs):
    return machine.submit_signature(
        signer.signing_link, SignatureMark(text=text or signer.name), consent=True, **kwargs
    )


def events(machine, envelope, owner):
    return [log.event for log in machine.list_audit_trail(envelope.id, owner.id)]


def test_crear_sobre_en_borrador(machine, owner, two_signer_envelope):
    env = two_signer_envelope
    assert env.status == EnvelopeStatus.DRAFT
    assert [s.email for s in env.signers] == ["a@example.com", "b@example.com"]
    assert all(s.signing_link is None for s in env.signers)
    assert len(env.fields) == 2
    assert events(machine, env, owner) == [AuditEvent.CREATED, AuditEvent.FIELD_ADDED, AuditEvent.FIELD_ADDED]


def test_crear_sobre_con_campos_solapados(machine, owner, document):
    with pytest.raises(ValidationError) as exc:
        machine.create_envelope(
            owner.id, document.id,
            signers=[SignerSpec("a@example.com", "Alice"), SignerSpec("b@example.com", "Bob")],
            fields=[signature_field("a@example.com", y=0.1), signature_field("b@example.com", y=0.12)],
        )
    assert exc.value.errors[0]["type"] == "OVERLAP"


def test_campo_en_pagina_inexistente(machine, owner, two_signer_envelope):
    with pytest.raises(ValidationError) as exc:
        machine.add_field(two_signer_envelope.id, owner.id, signature_field("a@example.com", page=3))
    assert exc.value.errors[0]["type"] == "PAGE_NOT_FOUND"


def test_documento_de_otro_propietario(machine, document):
    with pytest.raises(NotFoundError):
        machine.create_envelope("someone-else", document.id, signers=[SignerSpec("a@example.com", "A")])


def test_firmantes_duplicados(machine, owner, document):
    with pytest.raises(ValidationError):
        machine.create_envelope(owner.id, document.id,
                                signers=[SignerSpec("a@example.com", "A"), SignerSpec("A@example.com", "A2")])


def test_crud_de_campos_en_borrador(machine, owner, two_signer_envelope):
    env = two_signer_envelope
    added = machine.add_field(
        env.id, owner.id, FieldSpec(FieldType.DATE, 2, 0.5, 0.5, 0.2, 0.05, signer_email="a@example.com")
    )
    updated = machine.update_field(env.id, owner.id, added.id, {"x": 0.1, "label": "Fecha"})
    assert updated.x == 0.1
    assert updated.label == "Fecha"

    with pytest.raises(ValidationError):
        machine.update_field(env.id, owner.id, added.id, {"width": 2.0})

    machine.delete_field(env.id, owner.id, added.id)
    assert len(machine.get_envelope(env.id, owner.id).fields) == 2
    assert events(machine, env, owner)[-3:] == [
        AuditEvent.FIELD_ADDED, AuditEvent.FIELD_UPDATED, AuditEvent.FIELD_DELETED,
    ]


def test_actualizar_campo_sobre_otro_existente(machine, owner, two_signer_envelope):
    env = two_signer_envelope
    bob_field = [f for f in env.fields if f.signer.email == "b@example.com"][0]
    with pytest.raises(ValidationError):
        machine.update_field(env.id, owner.id, bob_field.id, {"y": 0.1})


def test_enviar_emite_enlaces_y_otp(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    assert env.status == EnvelopeStatus.SENT
    assert all(s.signing_link for s in env.signers)
    assert len({s.signing_link for s in env.signers}) == 2
    assert [i["email"] for i in notifier.invitations] == ["a@example.com", "b@example.com"]
    assert all(len(i["otp"]) == 6 for i in notifier.invitations)
    assert notifier.invitations[0]["link"].endswith(f"/signing?link={env.signers[0].signing_link}")


def test_campos_congelados_tras_enviar(machine, owner, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    with pytest.raises(StateConflictError):
        machine.add_field(env.id, owner.id, signature_field("a@example.com", page=2))
    with pytest.raises(StateConflictError):
        machine.delete_field(env.id, owner.id, env.fields[0].id)
    with pytest.raises(StateConflictError):
        machine.send_envelope(env.id, owner.id)


def test_enviar_sin_firmantes(machine, owner, document):
    env = machine.create_envelope(owner.id, document.id,
                                  signers=[SignerSpec("cc@example.com", "Copia", SignerRole.CC)])
    with pytest.raises(ValidationError):
        machine.send_envelope(env.id, owner.id)


def test_flujo_completo_dos_firmantes(machine, owner, document, store, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice, bob = env.signers

    verify(machine, notifier, alice)
    first = sign(machine, alice)
    assert first.step == 1
    assert first.envelope_status == EnvelopeStatus.PARTIALLY_SIGNED
    assert document.complete_signed_pdf_hash == first.artifact_hash
    assert alice.otp_code is None

    verify(machine, notifier, bob)
    second = sign(machine, bob)
    assert second.step == 2
    assert second.envelope_status == EnvelopeStatus.COMPLETED
    assert env.completed_at is not None
    assert len(notifier.completions) == 1
    links = notifier.completions[0]["links"]
    assert links[alice.id]["download"].endswith(f"/signing/{alice.signing_link}/download")
    assert links[bob.id]["certificate"].endswith(f"/envelopes/{env.id}/certificate")

    download = machine.get_signed_artifact(envelope_id=env.id, owner_id=owner.id)
    assert hashlib.sha256(download.data).hexdigest() == second.artifact_hash
    assert download.filename == "contract-signed.pdf"
    # 2 páginas de contenido + 1 de registro con ambos pasos
    assert len(PdfReader(io.BytesIO(download.data)).pages) == 3

    report = machine.get_signature_history(document.id)
    assert report.integrity_valid
    assert report.original_hash == document.original_hash
    assert [s.step for s in report.steps] == [1, 2]
    assert report.steps[0].complete_signed_pdf_hash == first.artifact_hash
    for entry in report.steps:
        assert store.stream_hash(entry.complete_signed_pdf_path) == entry.complete_signed_pdf_hash

    assert events(machine, env, owner) == [
        AuditEvent.CREATED, AuditEvent.FIELD_ADDED, AuditEvent.FIELD_ADDED, AuditEvent.SENT,
        AuditEvent.OTP_VERIFIED, AuditEvent.SIGNED, AuditEvent.OTP_VERIFIED, AuditEvent.SIGNED,
        AuditEvent.COMPLETED,
    ]


def test_firma_con_imagen_guarda_la_imagen(machine, owner, store, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    png = make_png_bytes()
    machine.submit_signature(alice.signing_link, SignatureMark(image=png), consent=True)
    assert alice.signature.consent_given
    assert alice.signature.image_path.endswith(".png")
    assert store.get(alice.signature.image_path) == png


def test_firmar_sin_verificar_otp(machine, owner, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    with pytest.raises(AuthChallengeError):
        sign(machine, env.signers[0])


def test_otp_expirado_en_el_minuto_once(machine, owner, notifier, clock, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    clock.advance(minutes=11)
    with pytest.raises(AuthChallengeError):
        machine.verify_otp(alice.signing_link, notifier.latest_otp(alice.email))

    machine.request_otp(alice.signing_link)
    assert notifier.otps[-1]["email"] == alice.email
    assert notifier.latest_otp(alice.email) == notifier.otps[-1]["otp"]
    verify(machine, notifier, alice)


def test_nuevo_otp_invalida_la_verificacion_previa(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    machine.request_otp(alice.signing_link)
    assert alice.otp_verified is False
    with pytest.raises(AuthChallengeError):
        sign(machine, alice)


def test_sin_consentimiento(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    with pytest.raises(ValidationError):
        machine.submit_signature(alice.signing_link, SignatureMark(text="Alice"), consent=False)


def test_doble_firma_rechazada(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    sign(machine, alice)
    with pytest.raises(StateConflictError):
        sign(machine, alice)
    assert machine.ledger.count_steps(env.document_id) == 1


def test_firmante_sin_campo_asignado(machine, owner, document, notifier):
    env = machine.create_envelope(owner.id, document.id, signers=[SignerSpec("a@example.com", "Alice")])
    env = machine.send_envelope(env.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    with pytest.raises(NoFieldAssigned):
        sign(machine, alice)

    result = sign(machine, alice, placement=Placement(2, 0.6, 0.1, 0.3, 0.08))
    assert result.envelope_status == EnvelopeStatus.COMPLETED
    assert alice.signature.placement["page"] == 2


def test_ubicacion_propia_no_puede_pisar_otro_campo(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice, bob = env.signers
    verify(machine, notifier, alice)

    with pytest.raises(ValidationError):
        sign(machine, alice, placement=Placement(1, 0.1, 0.5, 0.3, 0.08))
    with pytest.raises(ValidationError):
        sign(machine, alice, placement=Placement(3, 0.1, 0.1, 0.3, 0.08))
    assert machine.ledger.count_steps(env.document_id) == 0
    assert alice.signed_at is None

    # puede mover su propia firma a un hueco libre
    result = sign(machine, alice, placement=Placement(1, 0.1, 0.2, 0.3, 0.08))
    assert result.step == 1


def test_rechazo_cierra_el_sobre(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice, bob = env.signers
    machine.decline_signing(alice.signing_link, "No estoy de acuerdo", RequestContext("10.0.0.1", "pytest"))
    assert env.status == EnvelopeStatus.DECLINED
    assert alice.decline_reason == "No estoy de acuerdo"
    assert alice.otp_code is None

    with pytest.raises(StateConflictError):
        machine.verify_otp(bob.signing_link, notifier.latest_otp(bob.email))
    with pytest.raises(StateConflictError):
        machine.request_otp(bob.signing_link)
    with pytest.raises(StateConflictError):
        machine.void_envelope(env.id, owner.id)

    declined = [log for log in machine.list_audit_trail(env.id, owner.id) if log.event == AuditEvent.DECLINED]
    assert declined[0].ip_address == "10.0.0.1"
    assert declined[0].details == {"reason": "No estoy de acuerdo"}


def test_anular_sobre(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    machine.void_envelope(env.id, owner.id, "Error en el contrato")
    assert env.status == EnvelopeStatus.VOIDED
    assert env.void_reason == "Error en el contrato"
    with pytest.raises(StateConflictError):
        machine.verify_otp(alice.signing_link, "123456")
    with pytest.raises(StateConflictError):
        machine.void_envelope(env.id, owner.id)


def test_descarga_antes_de_firmar(machine, owner, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    with pytest.raises(NotReadyError):
        machine.get_signed_artifact(envelope_id=env.id, owner_id=owner.id)


def test_descarga_de_archivo_alterado(machine, owner, store, notifier, document, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    sign(machine, alice)

    path = store.root / document.signed_pdf_path
    path.write_bytes(path.read_bytes() + b"%tamper")
    with pytest.raises(IntegrityViolation):
        machine.get_signed_artifact(signing_link=alice.signing_link)
    assert machine.get_signature_history(document.id).integrity_valid is False


def test_firmar_sobre_base_alterada(machine, owner, store, notifier, document, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    path = store.root / document.storage_path
    path.write_bytes(path.read_bytes() + b"%tamper")
    with pytest.raises(IntegrityViolation):
        sign(machine, alice)
    assert alice.signed_at is None
    assert machine.ledger.count_steps(document.id) == 0


def test_huella_del_dispositivo(machine, owner, notifier, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    alice = env.signers[0]
    verify(machine, notifier, alice)
    sign(machine, alice, device_traits={"screen": "1920x1080", "timezone": "Asia/Kolkata"})
    logs = machine.list_audit_trail(env.id, owner.id)
    captured = [log for log in logs if log.event == AuditEvent.DEVICE_FINGERPRINT_CAPTURED]
    assert len(captured) == 1
    assert captured[0].details["device_traits"]["screen"] == "1920x1080"
    assert len(captured[0].details["device_fingerprint_id"]) == 64


def test_vista_del_firmante_registra_visita(machine, owner, two_signer_envelope):
    env = machine.send_envelope(two_signer_envelope.id, owner.id)
    view = machine.open_signing_link(env.signers[1].signing_link, RequestContext("1.2.3.4", "ua"))
    assert view.signer.email == "b@example.com"
    assert view.placement.y == 0.5
    assert "Information Technology Act" in view.consent_text
    assert events(machine, env, owner)[-1] == AuditEvent.VIEWED


def test_enlace_desconocido(machine):
    with pytest.raises(NotFoundError):
        machine.open_signing_link("does-not-exist")


def test_copia_descarga_tras_completar(machine, owner, document, notifier):
    env = machine.create_envelope(
        owner.id,
        document.id,
        signers=[
            SignerSpec("a@example.com", "Alice", SignerRole.SIGNER, 1),
            SignerSpec("cc@example.com", "Copia", SignerRole.CC, 2),
        ],
        fields=[signature_field("a@example.com")],
    )
    env = machine.send_envelope(env.id, owner.id)
    alice, cc = env.signers
    assert [i["email"] for i in notifier.invitations] == ["a@example.com"]

    # la copia puede verificarse pero nunca firmar
    machine.request_otp(cc.signing_link)
    assert machine.verify_otp(cc.signing_link, notifier.latest_otp(cc.email))
    with pytest.raises(StateConflictError):
        sign(machine, cc)

    verify(machine, notifier, alice)
    result = sign(machine, alice)
    assert result.envelope_status == EnvelopeStatus.COMPLETED
    assert "cc@example.com" in notifier.completions[0]["emails"]

    machine.request_otp(cc.signing_link)
    assert machine.verify_otp(cc.signing_link, notifier.latest_otp(cc.email))
    download = machine.get_signed_artifact(signing_link=cc.signing_link)
    assert download.sha256 == result.artifact_hash

    # quien ya firmó también puede volver a verificarse con un código nuevo
    machine.request_otp(alice.signing_link)
    verify(machine, notifier, alice)
    with pytest.raises(StateConflictError):
        sign(machine, alice)

    roles = {(log.event, log.actor_email): log.actor_role for log in machine.list_audit_trail(env.id, owner.id)}
    assert roles[(AuditEvent.OTP_VERIFIED, "cc@example.com")] == "CC"
