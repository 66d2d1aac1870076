import logging
import os
from functools import lru_cache

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import (
    AWS_ACCESS_KEY,
    AWS_REGION,
    AWS_SECRET_ACCESS_KEY,
    AWS_SES_SENDER_EMAIL,
    EMAIL_MAX_ATTEMPTS,
    EMAIL_TIMEOUT_SECONDS,
    OTP_LIFETIME_MINUTES,
)

logger = logging.getLogger("safecast_api.email")

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")

SUBJECT = "Your SafeCast Verification Code"

# Set up Jinja env
env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


class EmailDeliveryError(Exception):
    """Raised when the email provider did not accept a message."""

    def __init__(self, email: str, reason: str):
        super().__init__(f"Could not send email to {email}: {reason}")
        self.email = email
        self.reason = reason


def render_verification_email(otp: str) -> tuple[str, str]:
    """Return the (html, text) bodies for a verification code email."""
    template = env.get_template("otp_email.html.jinja")
    html_body = template.render(otp=otp, lifetime=OTP_LIFETIME_MINUTES)
    text_body = (
        f"Your SafeCast verification code is: {otp}. "
        f"This code expires in {OTP_LIFETIME_MINUTES} minutes."
    )
    return html_body, text_body


def build_ses_client():
    # total_max_attempts counts the first call too, so 2 means a single retry
    boto_config = BotoConfig(
        connect_timeout=EMAIL_TIMEOUT_SECONDS,
        read_timeout=EMAIL_TIMEOUT_SECONDS,
        retries={"total_max_attempts": EMAIL_MAX_ATTEMPTS, "mode": "standard"},
    )
    credentials = {}
    if AWS_ACCESS_KEY is not None and AWS_SECRET_ACCESS_KEY is not None:
        credentials = {
            "aws_access_key_id": str(AWS_ACCESS_KEY),
            "aws_secret_access_key": str(AWS_SECRET_ACCESS_KEY),
        }
    return boto3.client("ses", region_name=AWS_REGION, config=boto_config, **credentials)


class SesEmailSender:
    def __init__(self, ses=None, sender: str = AWS_SES_SENDER_EMAIL):
        self.ses = ses if ses is not None else build_ses_client()
        self.sender = sender

    def send_verification_email(self, email: str, otp: str) -> str | None:
        """Send the verification code and return the SES message id."""
        html_body, text_body = render_verification_email(otp)

        try:
            resp = self.ses.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [email]},
                Message={
                    "Subject": {"Data": SUBJECT},
                    "Body": {
                        "Html": {"Data": html_body},
                        "Text": {"Data": text_body},
                    },
                },
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.exception(f"SES ClientError when sending verification email to {email}: {code}")
            raise EmailDeliveryError(email, code) from e
        except BotoCoreError as e:
            logger.exception(f"SES transport error when sending verification email to {email}")
            raise EmailDeliveryError(email, type(e).__name__) from e

        return resp.get("MessageId")


@lru_cache
def get_email_sender() -> SesEmailSender:
    """FastAPI dependency returning the process-wide SES sender."""
    return SesEmailSender()
