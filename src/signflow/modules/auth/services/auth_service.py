import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from signflow.config import settings
from signflow.modules.documents.models.user import User, UserRole
from signflow.modules.envelopes.models.signer import EnvelopeSigner
from signflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthService:

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verifica si la contraseña coincide con el hash"""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Autentica usuario por email y contraseña"""
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            return None
        if not AuthService.verify_password(password, user.password_hash):
            return None
        if not user.is_active:
            return None
        return user

    @staticmethod
    def register_user(db: Session, name: str, email: str, password: str,
                      role: UserRole = UserRole.USER) -> Optional[User]:
        """Crea un usuario; devuelve None si el email ya existe"""
        email = email.lower()
        if db.query(User).filter(User.email == email).first():
            return None
        user = User(
            name=name,
            email=email,
            password_hash=AuthService.get_password_hash(password),
            role=role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("User %s registered with role %s", user.id, role.value)
        return user

    @staticmethod
    def ensure_bootstrap_admin(db: Session) -> None:
        email = settings.BOOTSTRAP_ADMIN_EMAIL
        password = settings.BOOTSTRAP_ADMIN_PASSWORD
        if not email or not password:
            return
        if AuthService.register_user(db, "Administrator", email, password, UserRole.ADMIN):
            logger.info("Bootstrap admin %s created", email)

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """Crea token JWT"""
        to_encode = data.copy()
        expire = utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Optional[str]:
        """Verifica token JWT y retorna el email del usuario"""
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None
        return payload.get("sub")

    @staticmethod
    def get_current_user(db: Session, token: str) -> Optional[User]:
        email = AuthService.verify_token(token)
        if email is None:
            return None
        return db.query(User).filter(User.email == email, User.is_active.is_(True)).first()

    # --- sesiones de firmante ------------------------------------------

    @staticmethod
    def create_signer_session(db: Session, signer: EnvelopeSigner,
                              now: Optional[datetime] = None) -> str:
        """Emite el token de sesión que el firmante presenta tras verificar el OTP"""
        now = now or utcnow()
        signer.session_token = secrets.token_urlsafe(32)
        signer.session_expiry = now + timedelta(minutes=settings.SIGNER_SESSION_TTL_MINUTES)
        db.commit()
        return signer.session_token

    @staticmethod
    def verify_signer_session(signer: EnvelopeSigner, token: Optional[str],
                              now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if not token or not signer.session_token or signer.session_expiry is None:
            return False
        if now > signer.session_expiry:
            return False
        return hmac.compare_digest(token.encode("utf-8"), signer.session_token.encode("utf-8"))

    @staticmethod
    def end_signer_session(db: Session, signer: EnvelopeSigner) -> None:
        """Cierra la sesión; hace falta un nuevo OTP para volver a entrar"""
        signer.session_token = None
        signer.session_expiry = None
        signer.otp_verified = False
        db.commit()
        logger.info("Signer session ended for %s", signer.id)
