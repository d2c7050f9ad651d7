from datetime import datetime

import pytest

from signflow.errors import IntegrityViolation, NotFoundError
from signflow.modules.ledger.services.integrity_ledger import IntegrityLedger, SignerSnapshot


def test_documento_recien_subido_verifica_contra_el_original(db, store, document):
    ledger = IntegrityLedger(db, store)
    check = ledger.verify_current(document.id)
    assert check.valid
    assert check.current_hash == document.original_hash
    assert check.path == document.storage_path
    assert ledger.count_steps(document.id) == 0


def test_pasos_numerados_en_orden(db, store, document):
    ledger = IntegrityLedger(db, store)
    h1 = store.put(b"v1", f"signed/{document.id}/1.pdf")
    h2 = store.put(b"v2", f"signed/{document.id}/2.pdf")
    ledger.append_step(document.id, SignerSnapshot("A", "a@x.com"), f"signed/{document.id}/1.pdf", h1,
                       datetime(2024, 1, 1))
    ledger.append_step(document.id, SignerSnapshot("B", "b@x.com"), f"signed/{document.id}/2.pdf", h2,
                       datetime(2024, 1, 2))
    db.commit()

    steps = ledger.history(document.id)
    assert [s.step for s in steps] == [1, 2]
    assert [s.signer_email for s in steps] == ["a@x.com", "b@x.com"]
    assert ledger.verify_chain(document.id) == []


def test_archivo_alterado_es_violacion(db, store, document, tmp_path):
    ledger = IntegrityLedger(db, store)
    path = store.root / document.storage_path
    path.write_bytes(path.read_bytes() + b"tamper")
    with pytest.raises(IntegrityViolation):
        ledger.verify_current(document.id)


def test_cadena_detecta_paso_alterado(db, store, document):
    ledger = IntegrityLedger(db, store)
    h1 = store.put(b"v1", "signed/x/1.pdf")
    ledger.append_step(document.id, SignerSnapshot("A", "a@x.com"), "signed/x/1.pdf", h1, datetime(2024, 1, 1))
    db.commit()
    (store.root / "signed/x/1.pdf").write_bytes(b"otro")
    assert ledger.verify_chain(document.id) == [1]


def test_documento_inexistente(db, store):
    with pytest.raises(NotFoundError):
        IntegrityLedger(db, store).verify_current("missing")
