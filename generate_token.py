from datetime import timedelta

from sqlmodel import Session

from auth import create_session_token
from database import get_session, init_db
from services.user_service import resolve_user


def generate_token(email: str, expiration_days: int = 365, session: Session | None = None):
    """Generate a session token for use in development, creating the user if needed."""
    email = email.lower().strip()

    if session is None:
        with get_session() as own_session:
            return generate_token(email, expiration_days, own_session)

    user = resolve_user(session, email)
    token, _ = create_session_token(user.id, user.email, timedelta(days=expiration_days))
    return token


if __name__ == "__main__":
    init_db()
    email = input("Enter the email to generate a session token for: ")
    token = generate_token(email)

    print(
        f"\nGenerated session token for {email}. "
        "To use the token in development, send it as a Bearer credential:\n\n"
    )
    print(f"Authorization: Bearer {token}")
