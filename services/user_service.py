import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from database import utcnow
from errors import NotFound, ValidationError
from records import User

logger = logging.getLogger("safecast_api.users")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


def get_user_by_email(session: Session, email: str) -> User | None:
    return session.exec(select(User).where(User.email == email)).first()


def is_existing_user(session: Session, email: str) -> bool:
    return get_user_by_email(session, email) is not None


def resolve_user(session: Session, email: str, now: datetime | None = None) -> User:
    """Find or create the verified user for ``email`` and mark it active."""
    now = now or utcnow()

    user = get_user_by_email(session, email)
    if user is None:
        user = User(email=email, is_verified=True, last_active_at=now, created_at=now)
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            # Another request created the same email first
            session.rollback()
            user = get_user_by_email(session, email)
            if user is None:
                raise
        else:
            session.refresh(user)
            logger.info(f"Created user id={user.id} for email={email}")
            return user

    user.is_verified = True
    user.last_active_at = now
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def touch_user(session: Session, user: User, now: datetime | None = None) -> User:
    user.last_active_at = now or utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def update_user_name(session: Session, email: str, name: str) -> User:
    name = name.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
        )

    user = get_user_by_email(session, email)
    if user is None:
        raise NotFound("User not found")

    user.name = name
    session.add(user)
    session.commit()
    session.refresh(user)

    logger.info(f"User name updated successfully: email={email}")
    return user
