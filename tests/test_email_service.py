from __future__ import annotations

import boto3
import pytest
from botocore.stub import ANY, Stubber

from config import EMAIL_MAX_ATTEMPTS, EMAIL_TIMEOUT_SECONDS
from services.email_service import (
    SUBJECT,
    EmailDeliveryError,
    SesEmailSender,
    build_ses_client,
    render_verification_email,
)


@pytest.fixture
def ses():
    return boto3.client(
        "ses",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def test_render_verification_email_includes_code():
    html_body, text_body = render_verification_email("482913")

    assert "482913" in html_body
    assert "30 minutes" in html_body
    assert "482913" in text_body


def test_send_verification_email_returns_message_id(ses):
    sender = SesEmailSender(ses=ses, sender="SafeCast <no-reply@safecast.app>")

    with Stubber(ses) as stubber:
        stubber.add_response(
            "send_email",
            {"MessageId": "msg-1"},
            expected_params={
                "Source": "SafeCast <no-reply@safecast.app>",
                "Destination": {"ToAddresses": ["a@example.com"]},
                "Message": {
                    "Subject": {"Data": SUBJECT},
                    "Body": {"Html": {"Data": ANY}, "Text": {"Data": ANY}},
                },
            },
        )

        assert sender.send_verification_email("a@example.com", "482913") == "msg-1"
        stubber.assert_no_pending_responses()


def test_send_verification_email_wraps_client_errors(ses):
    sender = SesEmailSender(ses=ses)

    with Stubber(ses) as stubber:
        stubber.add_client_error(
            "send_email",
            service_error_code="MessageRejected",
            service_message="Email address is not verified.",
            http_status_code=400,
        )

        with pytest.raises(EmailDeliveryError) as excinfo:
            sender.send_verification_email("a@example.com", "482913")

    assert excinfo.value.reason == "MessageRejected"
    assert excinfo.value.email == "a@example.com"


def test_build_ses_client_bounds_timeouts_and_retries():
    client = build_ses_client()
    config = client.meta.config

    assert config.connect_timeout == EMAIL_TIMEOUT_SECONDS
    assert config.read_timeout == EMAIL_TIMEOUT_SECONDS
    # The first call plus a single retry
    assert config.retries.get("mode") == "standard"
    assert config.retries.get("total_max_attempts") == EMAIL_MAX_ATTEMPTS == 2
    assert "max_attempts" not in config.retries
