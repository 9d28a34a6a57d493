"""Tests for origin, custom header and CSRF validation."""

import dataclasses

import pytest

from dreamjournal.app.core.config import SecurityConfig
from dreamjournal.app.middleware.request_security import (
    OriginValidator,
    RequestSecurity,
    ValidationOptions,
)

HEADER_NAME = "X-Dream-Journal-Request"
HEADER_SECRET = "header-secret"
APP_ORIGIN = "https://app.example.com"


@pytest.fixture
def config():
    return SecurityConfig(
        allowed_origins=frozenset({APP_ORIGIN}),
        custom_header_name=HEADER_NAME,
        custom_header_secret=HEADER_SECRET,
        csrf_secret="csrf-secret",
    )


@pytest.fixture
def security(config):
    return RequestSecurity(config)


def _headers(**overrides):
    headers = {"Origin": APP_ORIGIN, HEADER_NAME: HEADER_SECRET}
    headers.update(overrides)
    return {k: v for k, v in headers.items() if v is not None}


class TestOriginValidator:
    def test_allowed_origin(self, config):
        assert OriginValidator(config).validate_origin(APP_ORIGIN, None).valid

    def test_referer_fallback(self, config):
        result = OriginValidator(config).validate_origin(
            None, "https://app.example.com/journal?page=2"
        )
        assert result.valid

    def test_referer_origin_is_normalized(self, config):
        result = OriginValidator(config).validate_origin(
            None, "https://user@App.example.com:443/journal"
        )
        assert result.valid

    def test_origin_takes_precedence_over_referer(self, config):
        result = OriginValidator(config).validate_origin(
            "https://evil.com", "https://app.example.com/journal"
        )
        assert not result.valid

    def test_missing_origin_information(self, config):
        result = OriginValidator(config).validate_origin(None, None)
        assert result.valid is False
        assert result.reason == "Missing origin information"

    def test_unparsable_referer_counts_as_missing(self, config):
        result = OriginValidator(config).validate_origin(None, "not a url")
        assert result.reason == "Missing origin information"

    def test_disallowed_origin(self, config):
        result = OriginValidator(config).validate_origin("https://evil.com", None)
        assert result.valid is False
        assert result.reason == "Origin https://evil.com not allowed"

    @pytest.mark.parametrize(
        "origin",
        ["http://app.example.com", "https://app.example.com:8443"],
    )
    def test_strict_mode_compares_full_origin(self, config, origin):
        assert not OriginValidator(config).validate_origin(origin, None).valid

    @pytest.mark.parametrize(
        "origin",
        ["http://app.example.com", "https://app.example.com:8443"],
    )
    def test_relaxed_mode_compares_hostname(self, config, origin):
        relaxed = dataclasses.replace(config, relaxed_origin_check=True)
        assert OriginValidator(relaxed).validate_origin(origin, None).valid

    def test_relaxed_mode_still_rejects_other_hosts(self, config):
        relaxed = dataclasses.replace(config, relaxed_origin_check=True)
        assert not OriginValidator(relaxed).validate_origin("https://evil.com", None).valid

    def test_custom_header(self, config):
        validator = OriginValidator(config)

        assert validator.validate_custom_header(HEADER_SECRET).valid
        assert validator.validate_custom_header(None).reason == (
            f"Missing required header: {HEADER_NAME}"
        )
        assert validator.validate_custom_header("wrong").reason == (
            "Invalid security header value"
        )


class TestRequestSecurity:
    def test_all_checks_pass(self, security):
        token = security.csrf.issue("alice")
        report = security.validate(
            _headers(), ValidationOptions(csrf_token=token, session_id="alice")
        )
        assert report.valid
        assert report.errors == []

    def test_failures_accumulate(self, security):
        report = security.validate(
            _headers(Origin="https://evil.com", **{HEADER_NAME: "wrong"}),
            ValidationOptions(check_csrf=False),
        )
        assert report.valid is False
        assert report.errors == [
            "Origin https://evil.com not allowed",
            "Invalid security header value",
        ]

    def test_every_failure_is_reported_in_order(self, security):
        report = security.validate(
            {},
            ValidationOptions(csrf_token="garbage"),
        )
        assert report.errors == [
            "Missing origin information",
            f"Missing required header: {HEADER_NAME}",
            "Invalid token format",
        ]

    def test_missing_csrf_token_fails_closed(self, security):
        report = security.validate(_headers())
        assert report.errors == ["Missing CSRF token"]

    def test_csrf_check_can_be_disabled(self, security):
        assert security.validate(_headers(), ValidationOptions(check_csrf=False)).valid

    def test_csrf_default_follows_config(self, config):
        lenient = RequestSecurity(dataclasses.replace(config, require_csrf_by_default=False))
        assert lenient.validate(_headers()).valid
        assert not lenient.validate(_headers(), ValidationOptions(check_csrf=True)).valid

    def test_checks_can_be_skipped(self, security):
        report = security.validate(
            {},
            ValidationOptions(check_origin=False, check_custom_header=False, check_csrf=False),
        )
        assert report.valid

    def test_session_mismatch_reported(self, security):
        token = security.csrf.issue("alice")
        report = security.validate(
            _headers(), ValidationOptions(csrf_token=token, session_id="bob")
        )
        assert report.errors == ["Token session mismatch"]

    def test_header_lookup_is_case_insensitive(self, security):
        report = security.validate(
            {"origin": APP_ORIGIN, HEADER_NAME.lower(): HEADER_SECRET},
            ValidationOptions(check_csrf=False),
        )
        assert report.valid
