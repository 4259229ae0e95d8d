"""Signing helpers shared with Odoo."""

import hashlib
import hmac
from datetime import datetime, timezone

import pytest

from app.core import security
from app.core.exceptions import ErrorCodes, ValidationException


def test_sign_matches_hmac_sha256() -> None:
    expected = hmac.new(b"secret", b"20240101T10:00:0042keysaltsalt", hashlib.sha256).hexdigest()
    assert security.sign("20240101T10:00:0042keysaltsalt", "secret") == expected


def test_sign_is_deterministic_and_secret_bound() -> None:
    assert security.sign("message", "a") == security.sign("message", "a")
    assert security.sign("message", "a") != security.sign("message", "b")


@pytest.mark.parametrize("message, secret", [("", "secret"), ("message", ""), ("   ", "secret")])
def test_sign_rejects_empty_input(message, secret) -> None:
    with pytest.raises(ValidationException) as exc_info:
        security.sign(message, secret)
    assert exc_info.value.code == ErrorCodes.VALIDATION.INVALID_ARGUMENT.code


def test_verify_accepts_own_signature_and_rejects_tampering() -> None:
    digest = security.sign("message", "secret")
    assert security.verify("message", "secret", digest)
    assert security.verify("message", "secret", digest.upper())
    assert not security.verify("messagE", "secret", digest)
    assert not security.verify("message", "secret", None)


def test_payload_field_order_matters() -> None:
    payload = {
        "timestamp": "20240101T10:00:00",
        "user_id": 42,
        "key": "k",
        "key_salt": "ks",
        "salt": "s",
    }
    payload["hash"] = security.sign_payload(payload, security.ROTATION_FIELDS, "secret")

    assert security.verify_payload(payload, security.ROTATION_FIELDS, "secret")
    assert not security.verify_payload(payload, ("user_id", "timestamp", "key", "key_salt", "salt"), "secret")


def test_verify_payload_with_missing_field_is_false() -> None:
    payload = {"timestamp": "20240101T10:00:00", "user_id": 42, "key": "k", "salt": "s", "hash": "00"}
    assert not security.verify_payload(payload, security.ROTATION_FIELDS, "secret")


def test_compose_message_rejects_none() -> None:
    with pytest.raises(ValidationException):
        security.compose_message("a", None, "b")


def test_signature_timestamp_format_is_utc() -> None:
    moment = datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc)
    assert security.signature_timestamp(moment) == "20240305T14:07:09"


def test_generated_values_are_fresh() -> None:
    assert security.generate_salt() != security.generate_salt()
    placeholder = security.generate_rfid_placeholder()
    assert len(placeholder) == 20
    assert placeholder == placeholder.upper()
