import hashlib

import pytest

from conftest import make_pdf_bytes
from signflow.errors import NotFoundError, ValidationError
from signflow.modules.documents.models.user import User, UserRole
from signflow.modules.documents.services.document_service import DocumentService
from signflow.modules.documents.services.permission import can_perform_action

MAX_FILE_SIZE = 10 * 1024 * 1024


def create_dummy_user(session, email="test@mail.com", role=UserRole.USER):
    user = User(name="Test", email=email, password_hash="123", role=role, is_active=True)
    session.add(user)
    session.commit()
    return user


def test_rechazar_no_pdf(db, store):
    user = create_dummy_user(db)
    with pytest.raises(ValidationError):
        DocumentService(db, store).upload_document(
            user.id, b"Fake DOCX content", "no_pdf.docx",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document", MAX_FILE_SIZE,
        )


def test_rechazar_pdf_corrupto_vacio_o_grande(db, store):
    user = create_dummy_user(db)
    service = DocumentService(db, store)
    with pytest.raises(ValidationError):
        service.upload_document(user.id, b"%PDF-1.4 basura", "roto.pdf", "application/pdf", MAX_FILE_SIZE)
    with pytest.raises(ValidationError):
        service.upload_document(user.id, b"", "vacio.pdf", "application/pdf", MAX_FILE_SIZE)
    with pytest.raises(ValidationError):
        service.upload_document(user.id, make_pdf_bytes(), "grande.pdf", "application/pdf", 10)


def test_subir_pdf_valido_guarda_hash_original(db, store):
    user = create_dummy_user(db)
    data = make_pdf_bytes()
    doc = DocumentService(db, store).upload_document(user.id, data, "prueba.pdf", "application/pdf")
    assert doc.original_name == "prueba.pdf"
    assert doc.size_bytes == len(data)
    assert doc.original_hash == hashlib.sha256(data).hexdigest()
    assert doc.storage_path == f"documents/{doc.id}/original.pdf"
    assert store.get(doc.storage_path) == data
    assert doc.signed_pdf_path is None
    assert doc.current_hash == doc.original_hash


def test_documentos_ajenos_no_son_visibles(db, store):
    owner = create_dummy_user(db, "owner@mail.com")
    other = create_dummy_user(db, "other@mail.com")
    admin = create_dummy_user(db, "admin@mail.com", UserRole.ADMIN)
    service = DocumentService(db, store)
    doc = service.upload_document(owner.id, make_pdf_bytes(), "a.pdf", "application/pdf")

    assert [d.id for d in service.get_documents_by_user(owner.id)] == [doc.id]
    assert service.get_documents_by_user(other.id) == []
    assert [d.id for d in service.get_documents_by_user(admin.id)] == [doc.id]
    with pytest.raises(NotFoundError):
        service.get_document(doc.id, other.id)
    assert service.get_document(doc.id, admin.id).id == doc.id


def test_permisos_por_rol():
    assert can_perform_action(UserRole.USER, "upload")
    assert not can_perform_action(UserRole.USER, "view_all")
    assert can_perform_action(UserRole.ADMIN, "view_all")
