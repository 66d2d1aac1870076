from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import select

from database import as_utc, utcnow
from errors import DownstreamFailure, InvalidCode, InvalidOrExpiredCode, TooManyAttempts
from records import OTPEntry
from services import otp_service

EMAIL = "a@example.com"


def _entries(session, email=EMAIL):
    return session.exec(select(OTPEntry).where(OTPEntry.email == email)).all()


def test_generate_otp_is_six_digits():
    for _ in range(200):
        otp = otp_service.generate_otp()
        assert len(otp) == 6
        assert otp.isdigit()
        assert 100000 <= int(otp) <= 999999


def test_generate_otp_covers_range_bounds(monkeypatch):
    monkeypatch.setattr(otp_service.secrets, "randbelow", lambda n: 0)
    assert otp_service.generate_otp() == "100000"

    monkeypatch.setattr(otp_service.secrets, "randbelow", lambda n: n - 1)
    assert otp_service.generate_otp() == "999999"


def test_store_otp_hashes_code_and_sets_expiry(session):
    now = utcnow()
    entry = otp_service.store_otp(session, EMAIL, "482913", now=now)

    assert entry.code_hash != "482913"
    assert entry.attempts == 0
    assert as_utc(entry.expires_at) == now + timedelta(minutes=30)


def test_store_otp_replaces_earlier_codes(session):
    otp_service.store_otp(session, EMAIL, "111111")
    otp_service.store_otp(session, EMAIL, "222222")

    assert len(_entries(session)) == 1
    with pytest.raises(InvalidCode):
        otp_service.verify_stored_otp(session, EMAIL, "111111")
    otp_service.verify_stored_otp(session, EMAIL, "222222")


def test_verify_succeeds_once(session):
    otp_service.store_otp(session, EMAIL, "482913")

    otp_service.verify_stored_otp(session, EMAIL, "482913")
    assert _entries(session) == []

    with pytest.raises(InvalidOrExpiredCode):
        otp_service.verify_stored_otp(session, EMAIL, "482913")


def test_verify_after_window_fails_and_purges(session):
    issued = utcnow()
    otp_service.store_otp(session, EMAIL, "482913", now=issued)

    with pytest.raises(InvalidOrExpiredCode):
        otp_service.verify_stored_otp(
            session, EMAIL, "482913", now=issued + timedelta(minutes=31)
        )
    assert _entries(session) == []


def test_verify_right_at_expiry_still_accepted(session):
    issued = utcnow()
    otp_service.store_otp(session, EMAIL, "482913", now=issued)

    otp_service.verify_stored_otp(session, EMAIL, "482913", now=issued + timedelta(minutes=30))


def test_mismatch_increments_attempts(session):
    otp_service.store_otp(session, EMAIL, "482913")

    with pytest.raises(InvalidCode):
        otp_service.verify_stored_otp(session, EMAIL, "000000")

    [entry] = _entries(session)
    assert entry.attempts == 1


def test_three_mismatches_lock_out_correct_code(session):
    otp_service.store_otp(session, EMAIL, "482913")

    for _ in range(3):
        with pytest.raises(InvalidCode):
            otp_service.verify_stored_otp(session, EMAIL, "000000")

    with pytest.raises(TooManyAttempts):
        otp_service.verify_stored_otp(session, EMAIL, "482913")
    assert _entries(session) == []


def test_newest_record_is_the_one_checked(session):
    now = utcnow()
    session.add(
        OTPEntry(
            email=EMAIL,
            code_hash=otp_service.ph.hash("111111"),
            expires_at=now + timedelta(minutes=30),
            created_at=now - timedelta(minutes=5),
        )
    )
    session.add(
        OTPEntry(
            email=EMAIL,
            code_hash=otp_service.ph.hash("222222"),
            expires_at=now + timedelta(minutes=30),
            created_at=now,
        )
    )
    session.commit()

    with pytest.raises(InvalidCode):
        otp_service.verify_stored_otp(session, EMAIL, "111111", now=now)
    otp_service.verify_stored_otp(session, EMAIL, "222222", now=now)


def test_concurrent_consume_succeeds_only_once(session, monkeypatch):
    entry = otp_service.store_otp(session, EMAIL, "482913")
    # Both requests read the same row before either deletes it
    session.expunge(entry)
    monkeypatch.setattr(otp_service, "_latest_valid_entry", lambda s, email, now: entry)

    otp_service.verify_stored_otp(session, EMAIL, "482913")
    with pytest.raises(InvalidOrExpiredCode):
        otp_service.verify_stored_otp(session, EMAIL, "482913")


def test_corrupted_hash_is_discarded(session):
    entry = otp_service.store_otp(session, EMAIL, "482913")
    entry.code_hash = "not-an-argon2-hash"
    session.add(entry)
    session.commit()

    with pytest.raises(InvalidOrExpiredCode):
        otp_service.verify_stored_otp(session, EMAIL, "482913")
    assert _entries(session) == []


def test_purge_expired_otps_counts_rows(session):
    now = utcnow()
    otp_service.store_otp(session, "old@example.com", "111111", now=now - timedelta(hours=1))
    otp_service.store_otp(session, "new@example.com", "222222", now=now)

    assert otp_service.purge_expired_otps(session, now=now) == 1
    assert _entries(session, "old@example.com") == []
    assert len(_entries(session, "new@example.com")) == 1


def test_issue_otp_sends_generated_code(session, email_sender, monkeypatch):
    monkeypatch.setattr(otp_service, "generate_otp", lambda: "482913")

    otp_service.issue_otp(session, email_sender, EMAIL)

    assert email_sender.sent == [(EMAIL, "482913")]
    assert len(_entries(session)) == 1


def test_issue_otp_withdraws_code_when_email_fails(session, email_sender):
    email_sender.fail_with = "MessageRejected"

    with pytest.raises(DownstreamFailure):
        otp_service.issue_otp(session, email_sender, EMAIL)
    assert _entries(session) == []


def test_issue_otp_keeps_earlier_code_when_email_fails(session, email_sender, monkeypatch):
    otp_service.store_otp(session, EMAIL, "111111", now=utcnow() - timedelta(minutes=5))
    monkeypatch.setattr(otp_service, "generate_otp", lambda: "222222")
    email_sender.fail_with = "Throttling"

    with pytest.raises(DownstreamFailure):
        otp_service.issue_otp(session, email_sender, EMAIL)

    assert len(_entries(session)) == 1
    otp_service.verify_stored_otp(session, EMAIL, "111111")


def test_issue_otp_replaces_earlier_code_once_sent(session, email_sender, monkeypatch):
    otp_service.store_otp(session, EMAIL, "111111", now=utcnow() - timedelta(minutes=5))
    monkeypatch.setattr(otp_service, "generate_otp", lambda: "222222")

    otp_service.issue_otp(session, email_sender, EMAIL)

    assert len(_entries(session)) == 1
    with pytest.raises(InvalidCode):
        otp_service.verify_stored_otp(session, EMAIL, "111111")
    otp_service.verify_stored_otp(session, EMAIL, "222222")
