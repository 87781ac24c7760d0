"""
Identity provider: authoritative for credentials, issues and revokes sessions.
The access core talks to it only through IdentityProvider; LocalIdentityProvider
is the bundled implementation (bcrypt hashes in `identities`, JWT sessions).
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AuthenticationError, TransientIOError
from app.models.identity import Identity
from app.services.auth.jwt import TokenDenylist, create_access_token, decode_access_token

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid login credentials"
ALREADY_REGISTERED = "User already registered"

BCRYPT_MAX_BYTES = 72


@dataclass
class IdentityUser:
    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class IdentityResult:
    user: IdentityUser | None = None
    access_token: str | None = None
    error: str | None = None


class IdentityProvider(ABC):
    @abstractmethod
    def sign_in(self, email: str, password: str) -> IdentityResult:
        raise NotImplementedError

    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> IdentityResult:
        raise NotImplementedError

    @abstractmethod
    def sign_out(self, access_token: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_user(self, user_id: str) -> IdentityUser | None:
        raise NotImplementedError


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


class LocalIdentityProvider(IdentityProvider):
    def __init__(self, db: Session, denylist: TokenDenylist | None = None) -> None:
        self.db = db
        self._denylist = denylist

    @property
    def denylist(self) -> TokenDenylist:
        if self._denylist is None:
            self._denylist = TokenDenylist()
        return self._denylist

    @staticmethod
    def _to_user(identity: Identity) -> IdentityUser:
        return IdentityUser(
            id=identity.id,
            email=identity.email,
            user_metadata=dict(identity.user_metadata or {}),
        )

    def _find_by_email(self, email: str) -> Identity | None:
        return self.db.query(Identity).filter(Identity.email == email.strip().lower()).one_or_none()

    def sign_in(self, email: str, password: str) -> IdentityResult:
        identity = self._find_by_email(email)
        if identity is None or not verify_password(password, identity.password_hash):
            return IdentityResult(error=INVALID_CREDENTIALS)
        identity.last_sign_in_at = datetime.now(timezone.utc)
        self.db.add(identity)
        self.db.commit()
        token = create_access_token(identity.id)
        return IdentityResult(user=self._to_user(identity), access_token=token)

    def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> IdentityResult:
        email = email.strip().lower()
        if self._find_by_email(email) is not None:
            return IdentityResult(error=ALREADY_REGISTERED)
        identity = Identity(
            email=email,
            password_hash=hash_password(password),
            user_metadata=dict(metadata or {}),
        )
        self.db.add(identity)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return IdentityResult(error=ALREADY_REGISTERED)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("identity_sign_up_failed", extra={"email": email, "error": str(e)})
            raise TransientIOError() from e
        self.db.refresh(identity)
        return IdentityResult(user=self._to_user(identity))

    def sign_out(self, access_token: str) -> None:
        try:
            claims = decode_access_token(access_token)
        except AuthenticationError:
            return  # already unusable
        self.denylist.revoke(claims["jti"], claims["exp"])
        logger.info("session_revoked", extra={"user_id": claims["sub"]})

    def get_user(self, user_id: str) -> IdentityUser | None:
        identity = self.db.query(Identity).filter(Identity.id == user_id).one_or_none()
        return self._to_user(identity) if identity else None
