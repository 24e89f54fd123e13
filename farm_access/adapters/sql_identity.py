from __future__ import annotations

import hmac
import secrets

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from farm_access.adapters.base import (
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    LogMailer,
    Mailer,
    UnknownIdentityError,
    hash_password,
    normalize_email,
)
from farm_access.domain.models import IdentityCredential, IdentityToken
from farm_access.infra.db import get_engine


def _token(credential: IdentityCredential) -> IdentityToken:
    return IdentityToken(
        uid=credential.uid,
        email=credential.email,
        email_verified=credential.email_verified,
        display_name=credential.display_name,
    )


class SqlIdentityProvider:
    """Credential store on the ``identity_credentials`` table."""

    def __init__(self, *, engine: Engine | None = None, mailer: Mailer | None = None) -> None:
        self._engine = engine
        self._mailer = mailer or LogMailer()

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    def _by_email(self, session: Session, email: str) -> IdentityCredential | None:
        statement = select(IdentityCredential).where(IdentityCredential.email == normalize_email(email))
        return session.exec(statement).first()

    def _issue_verification(self, session: Session, credential: IdentityCredential) -> None:
        credential.verification_code = secrets.token_urlsafe(24)
        session.add(credential)
        session.commit()
        self._mailer.send(
            credential.email,
            "Verify your email",
            f"Confirm your account with code {credential.verification_code}",
        )

    def sign_in(self, email: str, password: str) -> IdentityToken:
        with self._session() as session:
            credential = self._by_email(session, email)
            if credential is None:
                raise InvalidCredentialsError("invalid credentials")
            if not hmac.compare_digest(credential.password_hash, hash_password(password)):
                raise InvalidCredentialsError("invalid credentials")
            return _token(credential)

    def sign_up(self, email: str, password: str, display_name: str) -> IdentityToken:
        with self._session() as session:
            credential = IdentityCredential(
                email=normalize_email(email),
                display_name=display_name,
                password_hash=hash_password(password),
            )
            session.add(credential)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise EmailAlreadyInUseError("email already in use") from exc
            session.refresh(credential)
            return _token(credential)

    def sign_out(self, uid: str) -> None:
        # Access tokens are stateless; nothing to invalidate server side.
        return None

    def send_password_reset(self, email: str) -> None:
        with self._session() as session:
            credential = self._by_email(session, email)
            if credential is None:
                raise UnknownIdentityError("no account for email")
            self._mailer.send(credential.email, "Reset your password", "Follow the reset link to choose a new password.")

    def send_verification_email(self, uid: str) -> None:
        with self._session() as session:
            credential = session.get(IdentityCredential, uid)
            if credential is None:
                raise UnknownIdentityError("unknown identity")
            if credential.email_verified:
                return
            self._issue_verification(session, credential)

    def confirm_email(self, code: str) -> IdentityToken:
        with self._session() as session:
            statement = select(IdentityCredential).where(IdentityCredential.verification_code == code)
            credential = session.exec(statement).first()
            if credential is None:
                raise InvalidCredentialsError("invalid verification code")
            credential.email_verified = True
            credential.verification_code = None
            session.add(credential)
            session.commit()
            session.refresh(credential)
            return _token(credential)
