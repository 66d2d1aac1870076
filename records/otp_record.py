from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from database import utcnow


class OTPEntry(SQLModel, table=True):
    __tablename__ = "otp_codes"

    id: int | None = Field(default=None, primary_key=True)
    # Not unique: a resend replaces older rows, but the table does not enforce it
    email: str = Field(index=True)
    code_hash: str
    expires_at: datetime = Field(sa_type=DateTime(timezone=True), index=True)
    attempts: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
