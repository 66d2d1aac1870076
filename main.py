from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_utilities import repeat_every
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    create_session,
    require_sweep_key,
    require_user,
    verify_email_access,
)
from config import (
    CORS_ORIGINS,
    EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS,
    INCIDENT_EXPIRY_SWEEP_INTERVAL_SECONDS,
)
from database import get_db, get_session, init_db
from errors import ApiError, DownstreamFailure, InternalError, ValidationError
from models import (
    CreateIncidentRequest,
    CreateIncidentResponse,
    ExpiredIncident,
    ExpireIncidentsResponse,
    IncidentDetailResponse,
    IncidentListResponse,
    IncidentResponse,
    SendOTPRequest,
    SendOTPResponse,
    UpdateUserNameRequest,
    UpdateUserNameResponse,
    UserResponse,
    VerifyOTPRequest,
    VerifyOTPResponse,
)
from records import User
from services.email_service import SesEmailSender, get_email_sender
from services.incident_service import (
    NearbyFilter,
    create_incident,
    expire_incidents,
    get_incident,
    list_active_incidents,
)
from services.logs_service import logger
from services.otp_service import issue_otp, purge_expired_otps, verify_stored_otp
from services.user_service import is_existing_user, resolve_user, update_user_name


# cron job to clean up expired OTPs
@repeat_every(seconds=EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS)
def clear_expired_otps():
    try:
        with get_session() as session:
            rows_deleted = purge_expired_otps(session)
    except SQLAlchemyError:
        logger.exception("Expired OTP cleanup task failed")
        return

    if rows_deleted:
        logger.info(f"Expired OTP cleanup task completed, removed {rows_deleted} entries")


# cron job to expire stale incidents
@repeat_every(seconds=INCIDENT_EXPIRY_SWEEP_INTERVAL_SECONDS)
def sweep_expired_incidents():
    try:
        with get_session() as session:
            expire_incidents(session)
    except SQLAlchemyError:
        logger.exception("Incident expiration task failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up... Initializing database.")
    init_db()
    logger.info("Database initialized.")
    # First run of each sweep happens at startup
    await clear_expired_otps()
    await sweep_expired_incidents()
    yield


app = FastAPI(
    title="SafeCast API",
    description="API for SafeCast community incident reports and passwordless sign-in",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers: every failure leaves as {"error": ..., "code": ...}
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": "http_error"},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])

    logger.warning(f"Rejected request to {request.url.path}: {messages}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationError("; ".join(messages)).to_dict(),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error while handling {request.url.path}", exc_info=exc)
    error = DownstreamFailure()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error while handling {request.url.path}", exc_info=exc)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Create router with /api prefix
router = APIRouter(prefix="/api")


def _normalize_email(email: str) -> str:
    email = email.lower().strip()
    if not email:
        raise ValidationError("Email is required")
    if "@" not in email:
        raise ValidationError("Invalid email")
    return email


# Auth Routes
@router.post(
    "/send-otp",
    response_model=SendOTPResponse,
    tags=["Authentication"],
    summary="Send OTP to email",
    description="Send a one-time passcode to the specified email. "
    "Once it has been sent, any code sent earlier to the same address stops working. "
    "isExistingUser tells the client whether it still needs to ask for a name.",
    responses={
        200: {"description": "The OTP was sent"},
        400: {"description": "The email is missing or malformed"},
        500: {"description": "The OTP could not be stored or the email could not be sent"},
    },
)
def send_otp(
    request: SendOTPRequest,
    session: Session = Depends(get_db),
    sender: SesEmailSender = Depends(get_email_sender),
):
    email = _normalize_email(request.email)

    existing = is_existing_user(session, email)
    issue_otp(session, sender, email)

    return SendOTPResponse(email=email, isExistingUser=existing)


@router.post(
    "/verify-otp",
    response_model=VerifyOTPResponse,
    tags=["Authentication"],
    summary="Verify OTP",
    description="Verify an OTP provided by the user and start a session.",
    responses={
        200: {"description": "The OTP is valid. Returns the user and a signed session token"},
        400: {"description": "The request is malformed, or the OTP is invalid, expired or locked"},
    },
)
def verify_otp(request: VerifyOTPRequest, session: Session = Depends(get_db)):
    """Verify an OTP provided by the user."""
    # Validate format
    email = _normalize_email(request.email)
    otp = request.otp.strip()

    if len(otp) != 6 or not (otp.isascii() and otp.isdigit()):
        logger.warning(f"Rejected OTP verification due to invalid OTP format for email: {email}")
        raise ValidationError("OTP must be exactly 6 digits")

    verify_stored_otp(session, email, otp)
    user = resolve_user(session, email)

    logger.info(f"OTP verified successfully for email={email}, user id={user.id}")
    return VerifyOTPResponse(user=UserResponse.from_record(user), session=create_session(user))


# Account Routes
@router.post(
    "/update-user-name",
    response_model=UpdateUserNameResponse,
    tags=["Account"],
    summary="Update display name",
    description="Set the display name of the signed-in user.",
    responses={
        200: {"description": "The name was updated"},
        400: {"description": "The name is too short or too long"},
        403: {"description": "The session is invalid or belongs to another email"},
        404: {"description": "The user does not exist"},
    },
)
def update_name(
    request: UpdateUserNameRequest,
    session: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    email = _normalize_email(request.email)
    verify_email_access(user, email)

    updated = update_user_name(session, email, request.name)
    return UpdateUserNameResponse(user=UserResponse.from_record(updated))


# Incident Routes
@router.get(
    "/incidents",
    response_model=IncidentListResponse,
    tags=["Incidents"],
    summary="List active incidents",
    description="List active incidents, newest first. "
    "Pass lat and lng to only return incidents within radius_km of that point.",
)
def list_incidents(
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    radius_km: float = Query(default=10.0, gt=0, le=20000),
    session: Session = Depends(get_db),
):
    if (lat is None) != (lng is None):
        raise ValidationError("lat and lng must be given together")

    near = NearbyFilter(lat=lat, lng=lng, radius_km=radius_km) if lat is not None else None
    incidents = list_active_incidents(session, near=near)
    return IncidentListResponse(
        incidents=[IncidentResponse.from_record(incident) for incident in incidents]
    )


@router.post(
    "/incidents",
    response_model=CreateIncidentResponse,
    tags=["Incidents"],
    summary="Report an incident",
    responses={
        200: {"description": "The incident was created"},
        400: {"description": "The report failed validation"},
        403: {"description": "The session is invalid"},
    },
)
def report_incident(
    request: CreateIncidentRequest,
    session: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    incident = create_incident(session, request, user)
    return CreateIncidentResponse(incident=IncidentResponse.from_record(incident))


@router.post(
    "/incidents/expire",
    response_model=ExpireIncidentsResponse,
    tags=["Incidents"],
    summary="Run the incident expiration sweep",
    description="Mark every active incident past its expiry as expired. "
    "Requires the X-Sweep-Key header.",
    responses={
        200: {"description": "The sweep ran; lists the incidents it expired"},
        403: {"description": "The sweep key is missing, wrong, or not configured"},
    },
    dependencies=[Depends(require_sweep_key)],
)
def run_expiration_sweep(session: Session = Depends(get_db)):
    expired = expire_incidents(session)
    return ExpireIncidentsResponse(
        expiredCount=len(expired),
        expiredIncidents=[ExpiredIncident(id=incident.id, title=incident.title) for incident in expired],
    )


@router.get(
    "/incidents/{incident_id}",
    response_model=IncidentDetailResponse,
    tags=["Incidents"],
    summary="Get an incident",
    responses={404: {"description": "The incident does not exist"}},
)
def read_incident(incident_id: str, session: Session = Depends(get_db)):
    return IncidentDetailResponse(incident=IncidentResponse.from_record(get_incident(session, incident_id)))


@router.get("/health", tags=["Health"], summary="Health check")
def health():
    return {"status": "ok"}


# Include router in the app
app.include_router(router)


def main():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
