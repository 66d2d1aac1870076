import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, update
from sqlmodel import Session, select

from config import INCIDENT_LIFETIME_HOURS
from database import utcnow
from errors import NotFound
from models import CreateIncidentRequest
from records import Incident, IncidentStatus, User

logger = logging.getLogger("safecast_api.incidents")

EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class NearbyFilter:
    lat: float
    lng: float
    radius_km: float


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def create_incident(
    session: Session,
    data: CreateIncidentRequest,
    user: User | None,
    now: datetime | None = None,
) -> Incident:
    now = now or utcnow()

    address = data.address.strip() if data.address else None
    incident = Incident(
        title=data.title,
        description=data.description,
        type=data.type,
        severity=data.severity,
        latitude=data.location.lat,
        longitude=data.location.lng,
        address=address or None,
        images=data.images or None,
        status=IncidentStatus.ACTIVE,
        expires_at=now + timedelta(hours=INCIDENT_LIFETIME_HOURS),
        created_at=now,
        updated_at=now,
        user_id=user.id if user else None,
    )
    session.add(incident)
    session.commit()
    session.refresh(incident)

    logger.info(f"Incident created: id={incident.id} type={incident.type.value}")
    return incident


def get_incident(session: Session, incident_id: str) -> Incident:
    incident = session.get(Incident, incident_id)
    if incident is None:
        raise NotFound("Incident not found")
    return incident


def list_active_incidents(
    session: Session, near: NearbyFilter | None = None, now: datetime | None = None
) -> list[Incident]:
    """Active, unexpired incidents, newest first, optionally within a radius."""
    now = now or utcnow()

    stmt = (
        select(Incident)
        .where(
            Incident.status == IncidentStatus.ACTIVE,
            or_(Incident.expires_at.is_(None), Incident.expires_at > now),
        )
        .order_by(Incident.created_at.desc())
    )
    incidents = list(session.exec(stmt).all())

    if near is None:
        return incidents

    return [
        incident
        for incident in incidents
        if haversine_km(near.lat, near.lng, incident.latitude, incident.longitude) <= near.radius_km
    ]


def expire_incidents(session: Session, now: datetime | None = None) -> list[Incident]:
    """
        Mark every active incident whose expires_at has passed as expired.

        Returns the incidents that were changed. Running it again without time
        passing changes nothing.
    """
    now = now or utcnow()

    due = session.exec(
        select(Incident).where(
            Incident.status == IncidentStatus.ACTIVE,
            Incident.expires_at.is_not(None),
            Incident.expires_at <= now,
        )
    ).all()

    if not due:
        logger.debug("No incidents to expire")
        return []

    ids = [incident.id for incident in due]
    session.exec(
        update(Incident)
        .where(Incident.id.in_(ids), Incident.status == IncidentStatus.ACTIVE)
        .values(status=IncidentStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    # Rows removed since the update are simply left out
    expired = list(
        session.exec(
            select(Incident)
            .where(Incident.id.in_(ids), Incident.status == IncidentStatus.EXPIRED)
            .order_by(Incident.id)
        ).all()
    )

    logger.info(f"Expired {len(expired)} incidents: {[incident.id for incident in expired]}")
    return expired
