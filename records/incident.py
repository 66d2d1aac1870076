import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from database import utcnow


class IncidentType(str, Enum):
    WATER_LOGGING = "water_logging"
    FALLEN_TREES = "fallen_trees"
    SEWAGE_ISSUES = "sewage_issues"
    HOUSE_FLOODING = "house_flooding"
    WILDLIFE_HAZARD = "wildlife_hazard"
    VEHICLE_STUCK = "vehicle_stuck"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IncidentStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    RESOLVED = "resolved"


class Incident(SQLModel, table=True):
    __tablename__ = "incidents"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    title: str
    description: str | None = None
    type: IncidentType
    severity: Severity
    latitude: float
    longitude: float
    address: str | None = None
    images: list[str] | None = Field(default=None, sa_column=Column(JSON))
    status: IncidentStatus = Field(default=IncidentStatus.ACTIVE, index=True)
    expires_at: datetime | None = Field(
        default=None, sa_type=DateTime(timezone=True), index=True
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    user_id: str | None = Field(default=None, foreign_key="users.id")
