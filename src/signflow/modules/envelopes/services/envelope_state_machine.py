import dataclasses
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from signflow.config import settings as default_settings
from signflow.errors import (
    AuthChallengeError,
    IntegrityViolation,
    NoFieldAssigned,
    NotFoundError,
    NotReadyError,
    StateConflictError,
    ValidationError,
)
from signflow.modules.documents.models.document import Document
from signflow.modules.envelopes.models import (
    SIGNABLE_STATUSES,
    VERIFIABLE_STATUSES,
    AuditEvent,
    AuditLog,
    DocumentField,
    Envelope,
    EnvelopeSigner,
    EnvelopeStatus,
    FieldType,
    Signature,
    SignerRole,
)
from signflow.modules.envelopes.repositories.envelope_repository import EnvelopeRepository
from signflow.modules.envelopes.services.audit_trail import AuditTrail
from signflow.modules.envelopes.services.field_validator import (
    FieldBox,
    validate_fields,
    validate_page_range,
)
from signflow.modules.envelopes.services.otp_challenge import OtpChallenge
from signflow.modules.ledger.models.signature_history import SignatureHistory
from signflow.modules.ledger.services.integrity_ledger import IntegrityLedger, SignerSnapshot
from signflow.modules.signing.services.compliance import generate_consent_text, generate_legal_notice
from signflow.modules.signing.services.signing_engine import (
    FingerprintInputs,
    Placement,
    SignatureMark,
    SigningEngine,
    content_page_count,
    epoch_millis,
    image_extension,
)
from signflow.modules.storage.services.content_store import ContentStore
from signflow.utils.clock import utcnow
from signflow.utils.hashing import sha256_hex_bytes, sha256_hex_text
from signflow.utils.locks import LockRegistry, registry as default_locks

logger = logging.getLogger(__name__)

UPDATABLE_FIELD_ATTRS = ("type", "page", "x", "y", "width", "height", "required", "label")


@dataclass(frozen=True)
class SignerSpec:
    email: str
    name: str
    role: SignerRole = SignerRole.SIGNER
    routing_order: int = 1


@dataclass(frozen=True)
class FieldSpec:
    type: FieldType
    page: int
    x: float
    y: float
    width: float
    height: float
    signer_email: Optional[str] = None
    signer_id: Optional[str] = None
    required: bool = True
    label: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class SignResult:
    signer_id: str
    document_id: str
    signed_at: datetime
    artifact_hash: str
    step: int
    envelope_status: EnvelopeStatus


@dataclass
class SigningView:
    envelope: Envelope
    document: Document
    signer: EnvelopeSigner
    placement: Optional[Placement]
    consent_text: str
    legal_notice: str

    @property
    def already_signed(self) -> bool:
        return self.signer.signed_at is not None


@dataclass
class HistoryReport:
    document_id: str
    original_hash: str
    current_hash: Optional[str]
    steps: List[SignatureHistory] = field(default_factory=list)
    integrity_valid: bool = False


@dataclass(frozen=True)
class SignedDownload:
    data: bytes
    filename: str
    sha256: str


def _box(source, field_id: str) -> FieldBox:
    return FieldBox(
        id=field_id,
        page=int(source.page),
        x=float(source.x),
        y=float(source.y),
        width=float(source.width),
        height=float(source.height),
    )


class EnvelopeStateMachine:
    """Ciclo de vida del sobre: DRAFT → SENT → PARTIALLY_SIGNED → COMPLETED.

    DECLINED se alcanza desde SENT/PARTIALLY_SIGNED y VOIDED desde cualquier
    estado no terminal. Todas las mutaciones toman el lock del sobre (y el del
    documento cuando se firma) antes de leer el estado actual.
    """

    def __init__(self, db: Session, store: ContentStore, notifier=None,
                 otp: Optional[OtpChallenge] = None,
                 engine: Optional[SigningEngine] = None,
                 ledger: Optional[IntegrityLedger] = None,
                 locks: LockRegistry = default_locks,
                 clock: Callable[[], datetime] = utcnow,
                 settings=default_settings):
        self.db = db
        self.repo = EnvelopeRepository(db)
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.otp = otp or OtpChallenge(settings.OTP_TTL_MINUTES, settings.OTP_LENGTH, clock)
        self.engine = engine or SigningEngine(store, settings.COMPLIANCE_JURISDICTION)
        self.ledger = ledger or IntegrityLedger(db, store)
        self.audit = AuditTrail(db, clock)
        self.locks = locks
        self.page_width = settings.PAGE_WIDTH
        self.page_height = settings.PAGE_HEIGHT
        self.jurisdiction = settings.COMPLIANCE_JURISDICTION
        self.frontend_url = settings.FRONTEND_URL.rstrip("/")
        self.api_url = settings.API_URL.rstrip("/")

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _envelope_key(envelope_id: str) -> str:
        return f"envelope:{envelope_id}"

    @staticmethod
    def _document_key(document_id: str) -> str:
        return f"document:{document_id}"

    def _load_envelope(self, envelope_id: str, owner_id: Optional[str] = None) -> Envelope:
        envelope = self.repo.get_envelope(envelope_id)
        if envelope is None or (owner_id is not None and envelope.owner_id != owner_id):
            raise NotFoundError("Envelope not found")
        return envelope

    def _signer_by_link(self, signing_link: str) -> EnvelopeSigner:
        signer = self.repo.get_signer_by_link(signing_link)
        if signer is None:
            raise NotFoundError("Signing link not found")
        return signer

    def signer_for_link(self, signing_link: str) -> EnvelopeSigner:
        return self._signer_by_link(signing_link)

    def signing_url(self, signer: EnvelopeSigner) -> str:
        return f"{self.frontend_url}/signing?link={signer.signing_link}"

    @staticmethod
    def _require_draft(envelope: Envelope) -> None:
        if envelope.status != EnvelopeStatus.DRAFT:
            raise StateConflictError(
                f"Envelope is {envelope.status.value}; fields can only change while DRAFT"
            )

    @staticmethod
    def _require_can_act(envelope: Envelope, signer: EnvelopeSigner) -> None:
        if envelope.status not in SIGNABLE_STATUSES:
            raise StateConflictError(f"Envelope is {envelope.status.value} and cannot be signed")
        if not signer.is_signing_party:
            raise StateConflictError(f"Recipients with role {signer.role.value} do not sign")
        if signer.has_acted:
            raise StateConflictError(
                "Signer has already signed" if signer.signed_at is not None else "Signer has already declined"
            )

    @staticmethod
    def _require_can_verify(envelope: Envelope) -> None:
        """Cualquier destinatario puede verificarse mientras el sobre siga abierto o completado."""
        if envelope.status not in VERIFIABLE_STATUSES:
            raise StateConflictError(f"Envelope is {envelope.status.value}; its signing links are closed")

    @staticmethod
    def _actor_role(signer: EnvelopeSigner) -> str:
        return "SIGNER" if signer.is_signing_party else signer.role.value

    def _page_count(self, document: Document) -> int:
        return content_page_count(self.store.get(document.storage_path), prior_steps=0)

    def _field_set_errors(self, document: Document, boxes: List[FieldBox]) -> list:
        """Valida el conjunto completo propuesto, escalado a puntos de página."""
        errors = validate_page_range(boxes, self._page_count(document)).errors
        scaled = [b.scaled(self.page_width, self.page_height) for b in boxes]
        errors += validate_fields(scaled, self.page_width, self.page_height).errors
        return errors

    def _validate_field_set(self, document: Document, boxes: List[FieldBox]) -> None:
        errors = self._field_set_errors(document, boxes)
        if errors:
            raise ValidationError("Invalid field placement", errors=[e.to_dict() for e in errors])

    @staticmethod
    def _find_signer(envelope: Envelope, signer_email: Optional[str] = None,
                     signer_id: Optional[str] = None) -> EnvelopeSigner:
        for signer in envelope.signers:
            if signer_id and signer.id == signer_id:
                return signer
            if signer_email and signer.email == signer_email.strip().lower():
                return signer
        raise ValidationError("Field references a signer that is not part of the envelope")

    def _dispatch(self, what: str, fn, *args, **kwargs) -> None:
        """Entrega best-effort: un fallo del notificador nunca deshace la operación."""
        if self.notifier is None:
            return
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Notification dispatch failed (%s)", what)

    # ------------------------------------------------------------------
    # composición (DRAFT)
    # ------------------------------------------------------------------

    def create_envelope(self, owner_id: str, document_id: str, signers: Iterable[SignerSpec],
                        fields: Iterable[FieldSpec] = (), subject: Optional[str] = None,
                        message: Optional[str] = None) -> Envelope:
        document = self.repo.get_document(document_id)
        if document is None or document.owner_id != owner_id:
            raise NotFoundError("Document not found")

        envelope = Envelope(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            document_id=document.id,
            status=EnvelopeStatus.DRAFT,
            subject=subject,
            message=message,
        )

        seen = set()
        for spec in signers:
            email = spec.email.strip().lower()
            if email in seen:
                raise ValidationError(f"Duplicate signer email: {email}")
            seen.add(email)
            envelope.signers.append(EnvelopeSigner(
                id=str(uuid.uuid4()),
                email=email,
                name=spec.name.strip(),
                role=spec.role,
                routing_order=spec.routing_order,
            ))

        new_fields = []
        for spec in fields:
            signer = self._find_signer(envelope, spec.signer_email, spec.signer_id)
            new_fields.append(DocumentField(
                id=str(uuid.uuid4()),
                signer=signer,
                type=spec.type,
                page=spec.page,
                x=spec.x,
                y=spec.y,
                width=spec.width,
                height=spec.height,
                required=spec.required,
                label=spec.label,
            ))
        self._validate_field_set(document, [_box(f, f.id) for f in new_fields])
        envelope.fields.extend(new_fields)

        self.repo.add(envelope)
        self.repo.flush()
        owner_email = envelope.owner.email if envelope.owner else None
        self.audit.record(envelope.id, AuditEvent.CREATED, actor_email=owner_email, actor_role="OWNER",
                          details={"document_id": document.id, "signers": len(envelope.signers)})
        for f in new_fields:
            self.audit.record(envelope.id, AuditEvent.FIELD_ADDED, actor_email=owner_email,
                              actor_role="OWNER", details={"field_id": f.id, "type": f.type.value})
        self.repo.commit()
        logger.info("Envelope %s created for document %s", envelope.id, document.id)
        return envelope

    def add_field(self, envelope_id: str, owner_id: str, spec: FieldSpec) -> DocumentField:
        with self.locks.hold(self._envelope_key(envelope_id)):
            self.repo.reload()
            envelope = self._load_envelope(envelope_id, owner_id)
            self._require_draft(envelope)
            signer = self._find_signer(envelope, spec.signer_email, spec.signer_id)

            new_field = DocumentField(
                id=str(uuid.uuid4()),
                envelope_id=envelope.id,
                signer_id=signer.id,
                type=spec.type,
                page=spec.page,
                x=spec.x,
                y=spec.y,
                width=spec.width,
                height=spec.height,
                required=spec.required,
                label=spec.label,
            )
            existing = self.repo.fields_for_envelope(envelope.id)
            boxes = [_box(f, f.id) for f in existing] + [_box(new_field, new_field.id)]
            self._validate_field_set(envelope.document, boxes)

            self.repo.add(new_field)
            self.audit.record(envelope.id, AuditEvent.FIELD_ADDED, actor_email=envelope.owner.email,
                              actor_role="OWNER",
                              details={"field_id": new_field.id, "type": spec.type.value, "page": spec.page})
            self.repo.commit()
            return new_field

    def update_field(self, envelope_id: str, owner_id: str, field_id: str, changes: Dict) -> DocumentField:
        with self.locks.hold(self._envelope_key(envelope_id)):
            self.repo.reload()
            envelope = self._load_envelope(envelope_id, owner_id)
            self._require_draft(envelope)
            target = self.repo.get_field(envelope.id, field_id)
            if target is None:
                raise NotFoundError("Field not found")

            applied = {k: v for k, v in changes.items() if k in UPDATABLE_FIELD_ATTRS and v is not None}
            new_signer = None
            if changes.get("signer_email") or changes.get("signer_id"):
                new_signer = self._find_signer(envelope, changes.get("signer_email"), changes.get("signer_id"))

            proposed = dataclasses.replace(_box(target, target.id), **{
                k: v for k, v in applied.items() if k in ("page", "x", "y", "width", "height")
            })
            boxes = [
                proposed if f.id == target.id else _box(f, f.id)
                for f in self.repo.fields_for_envelope(envelope.id)
            ]
            self._validate_field_set(envelope.document, boxes)

            for attr, value in applied.items():
                setattr(target, attr, value)
            if new_signer is not None:
                target.signer_id = new_signer.id
                applied["signer_id"] = new_signer.id

            details = {"field_id": target.id}
            details.update({k: (v.value if isinstance(v, FieldType) else v) for k, v in applied.items()})
            self.audit.record(envelope.id, AuditEvent.FIELD_UPDATED, actor_email=envelope.owner.email,
                              actor_role="OWNER", details=details)
            self.repo.commit()
            return target

    def delete_field(self, envelope_id: str, owner_id: str, field_id: str) -> None:
        with self.locks.hold(self._envelope_key(envelope_id)):
            self.repo.reload()
            envelope = self._load_envelope(envelope_id, owner_id)
            self._require_draft(envelope)
            target = self.repo.get_field(envelope.id, field_id)
            if target is None:
                raise NotFoundError("Field not found")
            self.repo.delete(target)
            self.audit.record(envelope.id, AuditEvent.FIELD_DELETED, actor_email=envelope.owner.email,
                              actor_role="OWNER", details={"field_id": field_id})
            self.repo.commit()

    # ------------------------------------------------------------------
    # envío y anulación
    # ------------------------------------------------------------------

    def send_envelope(self, envelope_id: str, owner_id: str) -> Envelope:
        invitations: List[Tuple[EnvelopeSigner, Optional[str]]] = []
        with self.locks.hold(self._envelope_key(envelope_id)):
            self.repo.reload()
            envelope = self._load_envelope(envelope_id, owner_id)
            if envelope.status != EnvelopeStatus.DRAFT:
                raise StateConflictError(f"Envelope is {envelope.status.value}; only DRAFT envelopes can be sent")
            if not any(s.is_signing_party for s in envelope.signers):
                raise ValidationError("Envelope has no signers")
            document = envelope.document
            if document is None or not self.store.exists(document.storage_path):
                raise NotFoundError("Envelope document is missing")

            for signer in envelope.signers:
                signer.signing_link = secrets.token_urlsafe(24)
                code = self.otp.generate(signer) if signer.is_signing_party else None
                if signer.is_signing_party:
                    invitations.append((signer, code))

            envelope.status = EnvelopeStatus.SENT
            self.audit.record(envelope.id, AuditEvent.SENT, actor_email=envelope.owner.email,
                              actor_role="OWNER",
                              details={"recipients": [s.email for s in envelope.signers]})
            self.repo.commit()
            logger.info("Envelope %s sent to %d signers", envelope.id, len(invitations))

        for signer, code in invitations:
            self._dispatch("invitation", self.notifier.send_signing_invitation if self.notifier else None,
                           signer, document, code, self.signing_url(signer), envelope.message)
        return envelope

    def void_envelope(self, envelope_id: str, owner_id: str, reason: Optional[str] = None) -> Envelope:
        with self.locks.hold(self._envelope_key(envelope_id)):
            self.repo.reload()
            envelope = self._load_envelope(envelope_id, owner_id)
            if envelope.is_terminal:
                raise StateConflictError(f"Envelope is already {envelope.status.value}")
            now = self.clock()
            envelope.status = EnvelopeStatus.VOIDED
            envelope.voided_at = now
            envelope.void_reason = reason
            for signer in envelope.signers:
                OtpChallenge.clear(signer)
                signer.session_token = None
                signer.session_expiry = None
            self.audit.record(envelope.id, AuditEvent.VOIDED, actor_email=envelope.owner.email,
                              actor_role="OWNER", details={"reason": reason} if reason else None)
            self.repo.commit()
            logger.info("Envelope %s voided", envelope.id)
            return envelope

    # ------------------------------------------------------------------
    # firmante: vista, OTP, firma, rechazo
    # ------------------------------------------------------------------

    def _signature_field(self, signer: EnvelopeSigner) -> Optional[DocumentField]:
        for f in signer.fields:
            if f.type == FieldType.SIGNATURE:
                return f
        return None

    def open_signing_link(self, signing_link: str, context: RequestContext = RequestContext()) -> SigningView:
        signer = self._signer_by_link(signing_link)
        envelope = signer.envelope
        sig_field = self._signature_field(signer)
        placement = None
        if sig_field is not None:
            placement = Placement(sig_field.page, sig_field.x, sig_field.y, sig_field.width, sig_field.height)

        self.audit.record(envelope.id, AuditEvent.VIEWED, actor_email=signer.email, actor_role=self._actor_role(signer),
                          ip_address=context.ip_address, user_agent=context.user_agent)
        self.repo.commit()
        return SigningView(
            envelope=envelope,
            document=envelope.document,
            signer=signer,
            placement=placement,
            consent_text=generate_consent_text(self.jurisdiction),
            legal_notice=generate_legal_notice(self.jurisdiction),
        )

    def request_otp(self, signing_link: str, context: RequestContext = RequestContext()) -> None:
        signer = self._signer_by_link(signing_link)
        with self.locks.hold(self._envelope_key(signer.envelope_id)):
            self.repo.reload()
            signer = self._signer_by_link(signing_link)
            envelope = signer.envelope
            self._require_can_verify(envelope)
            code = self.otp.generate(signer)
            self.audit.record(envelope.id, AuditEvent.OTP_REQUESTED, actor_email=signer.email,
                              actor_role=self._actor_role(signer), ip_address=context.ip_address,
                              user_agent=context.user_agent)
            self.repo.commit()

        self._dispatch("otp", self.notifier.send_otp if self.notifier else None,
                       signer, envelope.document, code, self.signing_url(signer))

    def verify_otp(self, signing_link: str, code: str, context: RequestContext = RequestContext()) -> bool:
        signer = self._signer_by_link(signing_link)
        with self.locks.hold(self._envelope_key(signer.envelope_id)):
            self.repo.reload()
            signer = self._signer_by_link(signing_link)
            envelope = signer.envelope
            self._require_can_verify(envelope)

            if not self.otp.verify(signer, code):
                logger.warning("OTP verification failed for signer %s", signer.id)
                raise AuthChallengeError("Invalid or expired verification code")

            signer.otp_verified = True
            signer.ip_address = context.ip_address or signer.ip_address
            signer.user_agent = context.user_agent or signer.user_agent
            self.audit.record(envelope.id, AuditEvent.OTP_VERIFIED, actor_email=signer.email,
                              actor_role=self._actor_role(signer), ip_address=context.ip_address,
                              user_agent=context.user_agent)
            self.repo.commit()
            return True

    def _resolve_placement(self, envelope: Envelope, signer: EnvelopeSigner, document: Document,
                           placement: Optional[Placement]) -> Placement:
        if placement is None:
            sig_field = self._signature_field(signer)
            if sig_field is None:
                raise NoFieldAssigned("No signature field is assigned to this signer")
            return Placement(sig_field.page, sig_field.x, sig_field.y, sig_field.width, sig_field.height)

        # La caja elegida sustituye al campo de firma propio y no puede pisar los demás
        own = self._signature_field(signer)
        boxes = [_box(f, f.id) for f in envelope.fields if own is None or f.id != own.id]
        boxes.append(_box(placement, "placement"))
        errors = self._field_set_errors(document, boxes)
        if errors:
            raise ValidationError("Invalid signature placement", errors=[e.to_dict() for e in errors])
        return placement

    def _store_signature(self, signer: EnvelopeSigner, mark: SignatureMark, placement: Placement,
                         signed_at: datetime) -> None:
        image_path = None
        if mark.is_image:
            image_path = f"signatures/{signer.id}/{epoch_millis(signed_at)}.{image_extension(mark.image)}"
            self.store.put(mark.image, image_path)

        signature = signer.signature or Signature(signer_id=signer.id)
        signature.consent_given = True
        signature.consent_text = generate_consent_text(self.jurisdiction)
        signature.image_path = image_path
        signature.text_content = None if mark.is_image else mark.text
        signature.placement = placement.to_dict()
        signature.created_at = signed_at
        signer.signature = signature

    def _recompute_status(self, envelope: Envelope, now: datetime) -> bool:
        parties = [s for s in envelope.signers if s.is_signing_party]
        if parties and all(s.signed_at is not None for s in parties):
            envelope.status = EnvelopeStatus.COMPLETED
            envelope.completed_at = now
            self.audit.record(envelope.id, AuditEvent.COMPLETED, actor_role="SYSTEM",
                              details={"signers": [s.email for s in parties]})
            return True
        envelope.status = EnvelopeStatus.PARTIALLY_SIGNED
        return False

    def submit_signature(self, signing_link: str, mark: SignatureMark, consent: bool,
                         placement: Optional[Placement] = None, suppress_mark_metadata: bool = False,
                         context: RequestContext = RequestContext(),
                         device_traits: Optional[dict] = None) -> SignResult:
        signer = self._signer_by_link(signing_link)
        envelope_key = self._envelope_key(signer.envelope_id)
        document_key = self._document_key(signer.envelope.document_id)

        with self.locks.hold(envelope_key, document_key):
            self.repo.reload()
            signer = self._signer_by_link(signing_link)
            envelope = signer.envelope
            self._require_can_act(envelope, signer)
            if not signer.otp_verified:
                raise AuthChallengeError("Identity verification (OTP) is required before signing")
            if not consent:
                raise ValidationError("Consent to sign electronically is required")

            document = self.repo.lock_document(envelope.document_id)
            if document is None:
                raise NotFoundError("Envelope document is missing")
            resolved = self._resolve_placement(envelope, signer, document, placement)
            mark = dataclasses.replace(
                mark,
                signer_name=mark.signer_name or signer.name,
                suppress_metadata=mark.suppress_metadata or suppress_mark_metadata,
            )

            base_bytes = self.store.get(document.current_path)
            if sha256_hex_bytes(base_bytes) != document.current_hash:
                logger.critical("INTEGRITY VIOLATION base artifact for document %s", document.id)
                raise IntegrityViolation("Current document version does not match its recorded hash")

            signed_at = self.clock()
            step = self.ledger.count_steps(document.id) + 1
            inputs = FingerprintInputs(document.id, signer.email, signer.name, signed_at)
            artifact = self.engine.produce_artifact(base_bytes, resolved, mark, inputs, step)

            try:
                entry = self.ledger.append_step(
                    document.id, SignerSnapshot(signer.name, signer.email),
                    artifact.path, artifact.sha256, signed_at,
                )
                if entry.step != artifact.step:
                    raise StateConflictError("Signing steps changed concurrently; retry")

                document.signed_pdf_path = artifact.path
                document.complete_signed_pdf_hash = artifact.sha256
                document.updated_at = signed_at

                self._store_signature(signer, mark, resolved, signed_at)
                signer.signed_at = signed_at
                signer.ip_address = context.ip_address or signer.ip_address
                signer.user_agent = context.user_agent or signer.user_agent
                OtpChallenge.clear(signer)

                self.audit.record(envelope.id, AuditEvent.SIGNED, actor_email=signer.email,
                                  actor_role="SIGNER", ip_address=context.ip_address,
                                  user_agent=context.user_agent,
                                  details={"step": entry.step, "hash": artifact.sha256,
                                           "fingerprint": artifact.fingerprint,
                                           "placement": resolved.to_dict()})
                if device_traits:
                    traits_id = sha256_hex_text(repr(sorted(device_traits.items())))
                    self.audit.record(envelope.id, AuditEvent.DEVICE_FINGERPRINT_CAPTURED,
                                      actor_email=signer.email, actor_role="SIGNER",
                                      ip_address=context.ip_address, user_agent=context.user_agent,
                                      details={"device_traits": device_traits,
                                               "device_fingerprint_id": traits_id})

                completed = self._recompute_status(envelope, signed_at)
                self.repo.commit()
            except IntegrityError as exc:
                self.repo.rollback()
                logger.warning("Concurrent step for document %s; artifact %s left unreferenced",
                               document.id, artifact.path)
                raise StateConflictError("Signing steps changed concurrently; retry") from exc
            except Exception:
                self.repo.rollback()
                logger.warning("Signing aborted for signer %s; artifact %s left unreferenced",
                               signer.id, artifact.path)
                raise

            result = SignResult(
                signer_id=signer.id,
                document_id=document.id,
                signed_at=signed_at,
                artifact_hash=artifact.sha256,
                step=entry.step,
                envelope_status=envelope.status,
            )
            logger.info("Signer %s signed envelope %s (step %d)", signer.id, envelope.id, entry.step)

        if completed:
            self._notify_completion(envelope, document)
        return result

    def _notify_completion(self, envelope: Envelope, document: Document) -> None:
        links = {
            s.id: {
                "download": f"{self.api_url}/signing/{s.signing_link}/download",
                "certificate": f"{self.api_url}/envelopes/{envelope.id}/certificate",
            }
            for s in envelope.signers
        }
        self._dispatch("completion", self.notifier.send_completion_notification if self.notifier else None,
                       list(envelope.signers), document, links)

    def decline_signing(self, signing_link: str, reason: Optional[str] = None,
                        context: RequestContext = RequestContext()) -> Envelope:
        signer = self._signer_by_link(signing_link)
        with self.locks.hold(self._envelope_key(signer.envelope_id)):
            self.repo.reload()
            signer = self._signer_by_link(signing_link)
            envelope = signer.envelope
            self._require_can_act(envelope, signer)

            now = self.clock()
            signer.declined_at = now
            signer.decline_reason = reason
            signer.ip_address = context.ip_address or signer.ip_address
            signer.user_agent = context.user_agent or signer.user_agent
            OtpChallenge.clear(signer)
            envelope.status = EnvelopeStatus.DECLINED
            self.audit.record(envelope.id, AuditEvent.DECLINED, actor_email=signer.email,
                              actor_role="SIGNER", ip_address=context.ip_address,
                              user_agent=context.user_agent,
                              details={"reason": reason} if reason else None)
            self.repo.commit()
            logger.info("Signer %s declined envelope %s", signer.id, envelope.id)
            return envelope

    # ------------------------------------------------------------------
    # lecturas
    # ------------------------------------------------------------------

    def get_envelope(self, envelope_id: str, owner_id: str) -> Envelope:
        return self._load_envelope(envelope_id, owner_id)

    def list_envelopes(self, owner_id: str) -> List[Envelope]:
        return self.repo.list_envelopes_for_owner(owner_id)

    def list_audit_trail(self, envelope_id: str, owner_id: str) -> List[AuditLog]:
        envelope = self._load_envelope(envelope_id, owner_id)
        return self.audit.for_envelope(envelope.id)

    def get_signed_artifact(self, envelope_id: Optional[str] = None, owner_id: Optional[str] = None,
                            signing_link: Optional[str] = None) -> SignedDownload:
        if signing_link is not None:
            envelope = self._signer_by_link(signing_link).envelope
        elif envelope_id is not None:
            envelope = self._load_envelope(envelope_id, owner_id)
        else:
            raise ValidationError("An envelope id or signing link is required")

        if envelope.status not in (EnvelopeStatus.PARTIALLY_SIGNED, EnvelopeStatus.COMPLETED):
            raise NotReadyError(f"Envelope is {envelope.status.value}; no signed artifact yet")

        document = envelope.document
        if not document.signed_pdf_path:
            raise NotReadyError("No signed artifact recorded for this document")
        data = self.store.get(document.signed_pdf_path)
        digest = sha256_hex_bytes(data)
        if digest != document.complete_signed_pdf_hash:
            logger.critical(
                "INTEGRITY VIOLATION download document=%s path=%s recorded=%s current=%s",
                document.id, document.signed_pdf_path, document.complete_signed_pdf_hash, digest,
            )
            raise IntegrityViolation("Signed document does not match its recorded hash")

        stem = document.original_name[:-4] if document.original_name.lower().endswith(".pdf") \
            else document.original_name
        return SignedDownload(data=data, filename=f"{stem}-signed.pdf", sha256=digest)

    def get_signature_history(self, document_id: str) -> HistoryReport:
        document = self.repo.get_document(document_id)
        if document is None:
            raise NotFoundError("Document not found")

        report = HistoryReport(
            document_id=document.id,
            original_hash=document.original_hash,
            current_hash=document.complete_signed_pdf_hash,
            steps=self.ledger.history(document.id),
        )
        try:
            report.integrity_valid = self.ledger.verify_current(document.id).valid
        except IntegrityViolation:
            report.integrity_valid = False
        except NotFoundError:
            logger.critical("INTEGRITY VIOLATION document=%s current file is missing", document.id)
            report.integrity_valid = False
        return report
