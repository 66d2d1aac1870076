import logging
import secrets
from datetime import datetime, timedelta

from argon2 import PasswordHasher
from argon2.exceptions import (
    InvalidHash,
    VerificationError,
    VerifyMismatchError,
)
from sqlalchemy import delete, update
from sqlmodel import Session, select

from config import OTP_LIFETIME_MINUTES, OTP_MAX_ATTEMPTS
from database import utcnow
from errors import DownstreamFailure, InvalidCode, InvalidOrExpiredCode, TooManyAttempts
from records import OTPEntry
from services.email_service import EmailDeliveryError, SesEmailSender

logger = logging.getLogger("safecast_api.otp")

ph = PasswordHasher()


def generate_otp() -> str:
    # randbelow is uniform, so every 6-digit code is equally likely
    return str(100000 + secrets.randbelow(900000))


def store_otp(
    session: Session,
    email: str,
    otp: str,
    now: datetime | None = None,
    replace: bool = True,
) -> OTPEntry:
    """Persist a hashed code for ``email``. With ``replace`` the earlier codes are dropped."""
    now = now or utcnow()

    if replace:
        session.exec(
            delete(OTPEntry)
            .where(OTPEntry.email == email)
            .execution_options(synchronize_session=False)
        )
    entry = OTPEntry(
        email=email,
        code_hash=ph.hash(otp),
        expires_at=now + timedelta(minutes=OTP_LIFETIME_MINUTES),
        attempts=0,
        created_at=now,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def discard_otp(session: Session, entry_id: int) -> None:
    session.exec(
        delete(OTPEntry)
        .where(OTPEntry.id == entry_id)
        .execution_options(synchronize_session=False)
    )
    session.commit()


def discard_earlier_otps(session: Session, entry: OTPEntry) -> int:
    """Delete every code for the entry's email other than the entry itself."""
    result = session.exec(
        delete(OTPEntry)
        .where(OTPEntry.email == entry.email, OTPEntry.id != entry.id)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount or 0


def purge_expired_otps(
    session: Session, email: str | None = None, now: datetime | None = None
) -> int:
    """Delete expired codes, optionally only those for one email. Returns the row count."""
    now = now or utcnow()

    stmt = delete(OTPEntry).where(OTPEntry.expires_at < now)
    if email is not None:
        stmt = stmt.where(OTPEntry.email == email)

    result = session.exec(stmt.execution_options(synchronize_session=False))
    session.commit()
    return result.rowcount or 0


def issue_otp(session: Session, sender: SesEmailSender, email: str) -> OTPEntry:
    """
        Generate a code for ``email``, store it and email it.

        Earlier codes for the email stay usable until the new one has been
        sent, and are removed after that. If the email could not be sent only
        the new code is withdrawn.
    """
    otp = generate_otp()
    entry = store_otp(session, email, otp, replace=False)

    try:
        message_id = sender.send_verification_email(email, otp)
    except EmailDeliveryError as e:
        discard_otp(session, entry.id)
        logger.error(f"Withdrew OTP for email={email} after delivery failure: {e.reason}")
        raise DownstreamFailure("Failed to send email")

    discard_earlier_otps(session, entry)
    logger.info(f"Verification email sent successfully: {email}, Message ID: {message_id}")
    return entry


def _latest_valid_entry(session: Session, email: str, now: datetime) -> OTPEntry | None:
    stmt = (
        select(OTPEntry)
        .where(OTPEntry.email == email, OTPEntry.expires_at >= now)
        .order_by(OTPEntry.created_at.desc(), OTPEntry.id.desc())
    )
    return session.exec(stmt).first()


def verify_stored_otp(
    session: Session, email: str, submitted_otp: str, now: datetime | None = None
) -> None:
    """
        Verify the submitted OTP against the newest valid code for the given email.
        Raises an ApiError if verification fails.
        A matching code is consumed; a wrong code counts against the attempt limit.
    """
    now = now or utcnow()

    purge_expired_otps(session, email=email, now=now)

    entry = _latest_valid_entry(session, email, now)
    if entry is None:
        logger.warning(f"OTP verification failed: no valid OTP for email={email}")
        raise InvalidOrExpiredCode()

    if entry.attempts >= OTP_MAX_ATTEMPTS:
        discard_otp(session, entry.id)
        logger.warning(f"OTP verification failed: too many attempts for email={email}")
        raise TooManyAttempts()

    try:
        ph.verify(entry.code_hash, submitted_otp)
    except VerifyMismatchError:
        session.exec(
            update(OTPEntry)
            .where(OTPEntry.id == entry.id)
            .values(attempts=OTPEntry.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        session.commit()

        logger.warning(f"OTP mismatch for email={email}")
        raise InvalidCode()

    except InvalidHash:
        # Stored hash is corrupted (should never happen unless storage corrupted)
        discard_otp(session, entry.id)

        logger.error(f"OTP verification failed due to invalid hash for email={email}")
        raise InvalidOrExpiredCode("Verification failed. Please request a new OTP.")

    except VerificationError:
        discard_otp(session, entry.id)

        logger.exception(f"General Argon2 verification error for email={email}")
        raise InvalidOrExpiredCode("Verification failed. Please request a new OTP.")

    # Consume the code; only one concurrent request can delete the row
    result = session.exec(
        delete(OTPEntry).where(
            OTPEntry.id == entry.id,
            OTPEntry.attempts < OTP_MAX_ATTEMPTS,
            OTPEntry.expires_at >= now,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if result.rowcount != 1:
        logger.warning(f"OTP for email={email} was consumed by a concurrent request")
        raise InvalidOrExpiredCode()
