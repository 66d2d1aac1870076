import os

from starlette.config import Config
from starlette.datastructures import CommaSeparatedStrings, Secret

# If APP_CONFIG is set, use that as the path to the .env file, or default to .env
env_file = os.getenv("APP_CONFIG", ".env")
if "APP_CONFIG" in os.environ and not os.path.isfile(env_file):
    raise FileNotFoundError(f"The configuration file specified in APP_CONFIG or the default .env does not exist: {env_file}")

config = Config(env_file)

# Session token Configuration
SESSION_SECRET_KEY: Secret = config("SESSION_SECRET_KEY", cast=Secret)
JWT_ALGORITHM: str = config("JWT_ALGORITHM", default="HS256")
SESSION_LIFETIME_DAYS: int = config("SESSION_LIFETIME_DAYS", cast=int, default=30)
JWT_ISSUER: str = config("JWT_ISSUER", default="safecast-api")
JWT_AUDIENCE: str = config("JWT_AUDIENCE", default="safecast-web")

# Application Configuration
CORS_ORIGINS: CommaSeparatedStrings = config(
    "CORS_ORIGINS", cast=CommaSeparatedStrings, default=CommaSeparatedStrings([])
)
DEBUG: bool = config("DEBUG", cast=bool, default=False)

# AWS SES Configuration
# Leave the keys unset to fall back to boto's default credential chain.
AWS_REGION: str = config("AWS_REGION", default="us-east-2")
AWS_ACCESS_KEY: Secret | None = config("AWS_ACCESS_KEY", cast=Secret, default=None)
AWS_SECRET_ACCESS_KEY: Secret | None = config(
    "AWS_SECRET_ACCESS_KEY", cast=Secret, default=None
)
AWS_SES_SENDER_EMAIL: str = config(
    "AWS_SES_SENDER_EMAIL", default="SafeCast <no-reply@safecast.app>"
)
EMAIL_TIMEOUT_SECONDS: int = config("EMAIL_TIMEOUT_SECONDS", cast=int, default=10)
EMAIL_MAX_ATTEMPTS: int = config("EMAIL_MAX_ATTEMPTS", cast=int, default=2)

# OTP Configuration
OTP_LIFETIME_MINUTES: int = config("OTP_LIFETIME_MINUTES", cast=int, default=30)
OTP_MAX_ATTEMPTS: int = config("OTP_MAX_ATTEMPTS", cast=int, default=3)

# Database Configuration
DATABASE_URL: str = config("DATABASE_URL", default="sqlite:///./safecast.db")
DATABASE_POOL_TIMEOUT_SECONDS: int = config(
    "DATABASE_POOL_TIMEOUT_SECONDS", cast=int, default=10
)

# Incident Configuration
INCIDENT_LIFETIME_HOURS: int = config("INCIDENT_LIFETIME_HOURS", cast=int, default=24)
SWEEP_API_KEY: Secret | None = config("SWEEP_API_KEY", cast=Secret, default=None)

# Cron Job Configuration
EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS: int = config(
    "EXPIRED_OTP_CLEANUP_INTERVAL_SECONDS", cast=int, default=60
)
INCIDENT_EXPIRY_SWEEP_INTERVAL_SECONDS: int = config(
    "INCIDENT_EXPIRY_SWEEP_INTERVAL_SECONDS", cast=int, default=300
)
