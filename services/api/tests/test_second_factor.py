"""Tests for TOTP helpers"""
import time

import pyotp

from admin_api.second_factor import generate_secret, provisioning_uri, qr_png, verify_code


def test_current_code_verifies():
    secret = generate_secret()
    assert verify_code(secret, pyotp.TOTP(secret).now()) is True


def test_adjacent_step_accepted_far_step_rejected():
    """One 30s step of skew either way is tolerated"""
    secret = generate_secret()
    totp = pyotp.TOTP(secret)
    now = time.time()
    assert verify_code(secret, totp.at(now - 30)) is True
    assert verify_code(secret, totp.at(now - 300)) is False


def test_code_formatting_is_normalized():
    """Spaces and dashes from authenticator apps are ignored"""
    secret = generate_secret()
    code = pyotp.TOTP(secret).now()
    assert verify_code(secret, f"{code[:3]} {code[3:]}") is True
    assert verify_code(secret, f"{code[:3]}-{code[3:]}") is True


def test_garbage_is_rejected():
    secret = generate_secret()
    assert verify_code(secret, None) is False
    assert verify_code(secret, "") is False
    assert verify_code(secret, "12345") is False
    assert verify_code(secret, "abcdef") is False
    assert verify_code(None, "123456") is False
    assert verify_code("not base32 !!", "123456") is False


def test_provisioning_uri_and_qr():
    secret = generate_secret()
    uri = provisioning_uri("a@x.com", secret)
    assert uri.startswith("otpauth://totp/")
    assert f"secret={secret}" in uri

    png = qr_png(uri)
    assert png[:8] == b"\x89PNG\r\n\x1a\n"
