"""
Tests for domain helpers and LiteLLM payload models.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from llmreq.models.api import CreateKeyRequest, KeyType
from llmreq.models.domain import KeyIdentity, mask_secret, parse_expiry
from llmreq.models.litellm import (
    LiteLLMGenerateKeyPayload,
    LiteLLMKeyPayload,
    LiteLLMUserPayload,
)


class TestParseExpiry:
    """Tests for parse_expiry."""

    @pytest.mark.parametrize("raw", [None, "", "  ", "null", "NULL", "None"])
    def test_no_expiry(self, raw):
        assert parse_expiry(raw) is None

    def test_zulu_timestamp(self):
        assert parse_expiry("2027-01-01T00:00:00Z") == datetime(2027, 1, 1, tzinfo=UTC)

    def test_offset_timestamp(self):
        parsed = parse_expiry("2027-01-01T02:00:00+02:00")
        assert parsed == datetime(2027, 1, 1, tzinfo=UTC)
        assert parsed.tzinfo == timezone(timedelta(hours=2))

    def test_naive_timestamp_is_utc(self):
        assert parse_expiry("2027-01-01T00:00:00.123456") == datetime(
            2027, 1, 1, 0, 0, 0, 123456, tzinfo=UTC
        )

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_expiry("tomorrow")


class TestMaskSecret:
    """Tests for mask_secret."""

    def test_long_secret(self):
        assert mask_secret("sk-1234567890abcdef") == "sk-1...cdef"

    @pytest.mark.parametrize("secret", ["", "sk-1", "12345678"])
    def test_short_secret_unchanged(self, secret):
        assert mask_secret(secret) == secret


class TestKeyIdentity:
    def test_is_immutable(self):
        identity = KeyIdentity(remote_key_id="tok", mask="sk-...abcd", confirmed=True)
        with pytest.raises(AttributeError):
            identity.confirmed = False  # type: ignore[misc]


class TestCreateKeyRequest:
    """Tests for the create request body."""

    def test_defaults(self):
        request = CreateKeyRequest(name="laptop")
        assert request.budget == 0.0
        assert request.type == ""

    def test_name_too_long(self):
        with pytest.raises(ValidationError):
            CreateKeyRequest(name="x" * 256)

    def test_key_type_values(self):
        assert KeyType("long-term") is KeyType.LONG_TERM
        assert KeyType.STANDARD.value == "standard"


class TestLiteLLMKeyPayload:
    """Tests for LiteLLMKeyPayload."""

    def test_token_used_when_key_missing(self):
        remote = LiteLLMKeyPayload(token="tok-1", key_alias="a", user_id="u").to_domain()
        assert remote.remote_key_id == "tok-1"
        assert remote.mask == "tok-1"

    def test_key_preferred_over_token(self):
        remote = LiteLLMKeyPayload(key="key-1", token="tok-1").to_domain()
        assert remote.remote_key_id == "key-1"

    def test_nulls_absorbed(self):
        payload = LiteLLMKeyPayload.model_validate(
            {"token": "tok-1", "spend": None, "models": None, "key_alias": None}
        )
        remote = payload.to_domain()
        assert remote.spend == 0.0
        assert remote.alias == ""
        assert payload.models == []

    def test_numeric_expires_kept_as_text(self):
        payload = LiteLLMKeyPayload.model_validate({"token": "tok-1", "expires": 1700000000})
        assert payload.expires == "1700000000"

    def test_unknown_fields_ignored(self):
        payload = LiteLLMKeyPayload.model_validate({"token": "tok-1", "rpm_limit": 5})
        assert payload.token == "tok-1"


class TestLiteLLMUserPayload:
    """Tests for LiteLLMUserPayload."""

    def test_nested_user_info(self):
        payload = LiteLLMUserPayload.model_validate(
            {"user_id": "u", "user_info": {"user_email": "u@x", "max_budget": 2.0, "spend": None}}
        )
        user = payload.to_domain()
        assert user.user_id == "u"
        assert user.user_email == "u@x"
        assert user.max_budget == 2.0
        assert user.spend == 0.0

    def test_flat_payload(self):
        user = LiteLLMUserPayload.model_validate({"user_id": "u", "spend": 1.0}).to_domain()
        assert user.spend == 1.0
        assert user.max_budget is None


class TestLiteLLMGenerateKeyPayload:
    """Tests for LiteLLMGenerateKeyPayload."""

    def test_secret_from_key(self):
        generated = LiteLLMGenerateKeyPayload(
            key="sk-secret", token="tok-1", expires="2026-11-18T00:00:00Z"
        ).to_domain()
        assert generated.secret == "sk-secret"
        assert generated.expires_raw == "2026-11-18T00:00:00Z"

    def test_secret_from_token_only(self):
        generated = LiteLLMGenerateKeyPayload(token="sk-secret").to_domain()
        assert generated.secret == "sk-secret"
        assert generated.expires_raw is None

    def test_empty(self):
        assert LiteLLMGenerateKeyPayload().secret == ""
