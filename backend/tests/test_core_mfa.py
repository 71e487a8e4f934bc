"""
Tests for wotc_sync/core/mfa.py - Portal MFA codes.
"""
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from wotc_sync.core.mfa import (
    consume_backup_code,
    generate_backup_codes,
    generate_totp_secret,
    generate_totp_token,
    get_mfa_token,
    validate_totp_token,
)

SECRET = "JBSWY3DPEHPK3PXP"


class TestTotp:
    def test_token_is_six_digits(self):
        token = generate_totp_token(SECRET)
        assert len(token) == 6
        assert token.isdigit()

    def test_matches_authenticator_apps(self):
        at = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert generate_totp_token(SECRET, at) == pyotp.TOTP(SECRET).at(at)

    def test_validate_accepts_adjacent_step(self):
        at = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        previous = generate_totp_token(SECRET, at - timedelta(seconds=30))
        assert validate_totp_token(previous, SECRET, for_time=at)

    def test_validate_rejects_distant_step(self):
        at = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        old = generate_totp_token(SECRET, at - timedelta(minutes=5))
        assert not validate_totp_token(old, SECRET, for_time=at)

    def test_validate_rejects_missing_input(self):
        assert not validate_totp_token("", SECRET)
        assert not validate_totp_token("123456", "")

    def test_generated_secret_is_base32(self):
        secret = generate_totp_secret()
        assert len(generate_totp_token(secret)) == 6


class TestBackupCodes:
    def test_generate(self):
        codes = generate_backup_codes()
        assert len(codes) == 10
        assert all(len(c) == 8 and c.isalnum() and c.upper() == c for c in codes)

    def test_consume_removes_exactly_one(self):
        remaining = consume_backup_code(" aaaa1111 ", ["AAAA1111", "BBBB2222"])
        assert remaining == ["BBBB2222"]

    def test_consume_unknown_code(self):
        with pytest.raises(ValueError):
            consume_backup_code("ZZZZ9999", ["AAAA1111"])


class TestGetMfaToken:
    def test_no_mfa(self):
        assert get_mfa_token(None, SECRET) is None

    @pytest.mark.parametrize("mfa_type", ["totp", "authenticator_app", "TOTP"])
    def test_generated_types(self, mfa_type):
        token = get_mfa_token(mfa_type, SECRET)
        assert token is not None and len(token) == 6

    def test_generated_type_without_secret(self):
        assert get_mfa_token("totp", None) is None

    @pytest.mark.parametrize("mfa_type", ["sms", "email"])
    def test_manual_types_need_operator(self, mfa_type):
        assert get_mfa_token(mfa_type, SECRET) is None

    def test_backup_code_type_returns_first_code(self):
        assert get_mfa_token("backup_code", None, ["AAAA1111", "BBBB2222"]) == "AAAA1111"

    def test_backup_code_type_exhausted(self):
        assert get_mfa_token("backup_code", None, []) is None

    def test_unknown_type(self):
        assert get_mfa_token("carrier_pigeon", SECRET) is None
