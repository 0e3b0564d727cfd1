import os
import secrets
import time
from datetime import datetime, timedelta
from typing import Optional, Type

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from werkzeug.security import check_password_hash, generate_password_hash

from campus_cli.exceptions import AccountExistsError
from campus_cli.models import IdentityAccount, VerificationToken
from campus_cli.store.paths import normalize_email
from campus_cli.utils.email_sender import EmailSender
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

PASSWORD_RESET_URL = os.getenv(
    "PASSWORD_RESET_URL", "https://campus.local/reset-password"
)
RESET_TOKEN_TTL = timedelta(hours=1)


class IdentityProvider:
    """Account store used for CR logins.

    Only the operations the CR workflow needs: account creation, lookup by
    email, password reset dispatch and authentication.
    """

    def __init__(self, engine: Engine, email_sender: Type[EmailSender] = EmailSender):
        self._session_factory = sessionmaker(bind=engine)
        self.email_sender = email_sender

    def find_account_by_email(self, email: str) -> Optional[str]:
        normalized = normalize_email(email)
        with self._session_factory() as session:
            return session.scalar(
                select(IdentityAccount.id).where(IdentityAccount.email == normalized)
            )

    def create_account(self, email: str, password: str) -> str:
        normalized = normalize_email(email)
        account = IdentityAccount(
            email=normalized,
            password_hash=generate_password_hash(password),
            created_at=int(time.time()),
        )
        try:
            with self._session_factory() as session, session.begin():
                session.add(account)
                session.flush()
                account_id = account.id
        except IntegrityError as e:
            raise AccountExistsError(normalized) from e

        logger.info(f"Created identity account {account_id} for {normalized}")
        return account_id

    def send_password_reset(self, email: str) -> bool:
        """Issue a reset token and mail the reset link. Returns False if nothing was sent."""
        normalized = normalize_email(email)
        if not self.find_account_by_email(normalized):
            logger.warning(f"Password reset requested for unknown account {normalized}")
            return False

        token = secrets.token_urlsafe(24)
        with self._session_factory() as session, session.begin():
            session.execute(
                delete(VerificationToken).where(
                    VerificationToken.identifier == normalized
                )
            )
            session.add(
                VerificationToken(
                    identifier=normalized,
                    token=token,
                    expires=datetime.utcnow() + RESET_TOKEN_TTL,
                )
            )

        link = f"{PASSWORD_RESET_URL}?email={normalized}&token={token}"
        body = (
            "A password reset was requested for your Class Representative account.\n\n"
            f"Set a new password here: {link}\n\n"
            "The link expires in one hour. Your previous password will not work."
        )
        sent = self.email_sender.send_email(
            normalized, "Reset your Class Representative password", body
        )
        if sent:
            logger.info(f"Password reset dispatched to {normalized}")
        else:
            logger.warning(f"Password reset token stored but email to {normalized} failed")
        return sent

    def complete_password_reset(self, email: str, token: str, new_password: str) -> bool:
        normalized = normalize_email(email)
        with self._session_factory() as session, session.begin():
            stored = session.get(VerificationToken, (normalized, token))
            if stored is None or stored.expires < datetime.utcnow():
                logger.warning(f"Invalid or expired reset token for {normalized}")
                return False
            account = session.scalar(
                select(IdentityAccount).where(IdentityAccount.email == normalized)
            )
            if account is None:
                return False
            account.password_hash = generate_password_hash(new_password)
            account.password_changed_at = int(time.time())
            session.delete(stored)
        logger.info(f"Password reset completed for {normalized}")
        return True

    def authenticate(self, email: str, password: str) -> Optional[str]:
        normalized = normalize_email(email)
        with self._session_factory() as session:
            account = session.scalar(
                select(IdentityAccount).where(IdentityAccount.email == normalized)
            )
            if account is None or account.disabled:
                return None
            if not check_password_hash(account.password_hash, password):
                return None
            return account.id
