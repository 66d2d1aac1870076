from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator

from database import as_utc
from records import Incident, IncidentStatus, IncidentType, Severity, User


class SendOTPRequest(BaseModel):
    email: str


class VerifyOTPRequest(BaseModel):
    email: str
    otp: str


class UpdateUserNameRequest(BaseModel):
    email: str
    name: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: str | None = None

    @classmethod
    def from_record(cls, user: User) -> "UserResponse":
        return cls(id=user.id, email=user.email, name=user.name)


class SessionResponse(BaseModel):
    """Signed bearer token and the moment it stops being accepted."""

    token: str
    expiresAt: datetime


class SendOTPResponse(BaseModel):
    success: bool = True
    email: str
    isExistingUser: bool


class VerifyOTPResponse(BaseModel):
    success: bool = True
    user: UserResponse
    session: SessionResponse


class UpdateUserNameResponse(BaseModel):
    success: bool = True
    user: UserResponse


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class CreateIncidentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str | None = None
    type: IncidentType
    severity: Severity
    location: Location
    address: str | None = None
    images: List[str] | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value


class IncidentResponse(BaseModel):
    id: str
    title: str
    description: str | None = None
    type: IncidentType
    severity: Severity
    location: Location
    address: str | None = None
    images: List[str] | None = None
    status: IncidentStatus
    expiresAt: datetime | None = None
    createdAt: datetime
    userId: str | None = None

    @classmethod
    def from_record(cls, incident: Incident) -> "IncidentResponse":
        return cls(
            id=incident.id,
            title=incident.title,
            description=incident.description,
            type=incident.type,
            severity=incident.severity,
            location=Location(lat=incident.latitude, lng=incident.longitude),
            address=incident.address,
            images=incident.images,
            status=incident.status,
            expiresAt=as_utc(incident.expires_at),
            createdAt=as_utc(incident.created_at),
            userId=incident.user_id,
        )


class IncidentListResponse(BaseModel):
    incidents: List[IncidentResponse]


class IncidentDetailResponse(BaseModel):
    incident: IncidentResponse


class CreateIncidentResponse(BaseModel):
    success: bool = True
    incident: IncidentResponse


class ExpiredIncident(BaseModel):
    id: str
    title: str


class ExpireIncidentsResponse(BaseModel):
    success: bool = True
    expiredCount: int
    expiredIncidents: List[ExpiredIncident]
