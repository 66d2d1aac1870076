from records.incident import Incident, IncidentStatus, IncidentType, Severity
from records.otp_record import OTPEntry
from records.user import User

__all__ = [
    "Incident",
    "IncidentStatus",
    "IncidentType",
    "OTPEntry",
    "Severity",
    "User",
]
