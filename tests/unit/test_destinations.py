"""Tests for destination models and configuration checks."""

from __future__ import annotations

import pytest

from postbridge.destinations.models import (
    AuthType,
    Destination,
    DestinationConfig,
    DestinationType,
    validate_destination,
)


def _remote(**config) -> Destination:
    config.setdefault("site_url", "https://blog.example.com")
    return Destination(
        id="dest-1",
        name="Blog",
        type=DestinationType.WORDPRESS_REST,
        config=DestinationConfig(**config),
    )


class TestValidateDestination:
    def test_valid_remote(self) -> None:
        assert validate_destination(_remote()) == []

    @pytest.mark.parametrize("site_url", ["", "blog.example.com", "ftp://blog.example.com"])
    def test_site_url_required(self, site_url: str) -> None:
        assert validate_destination(_remote(site_url=site_url)) == [
            "A valid site URL is required"
        ]

    def test_https_required(self) -> None:
        assert validate_destination(_remote(site_url="http://blog.example.com")) == [
            "HTTPS is required for remote destinations"
        ]

    @pytest.mark.parametrize("type_", [DestinationType.LOCAL_STORE, DestinationType.LOCAL_FILE])
    def test_local_needs_no_url(self, type_: DestinationType) -> None:
        assert validate_destination(Destination(type=type_)) == []

    def test_unknown_type(self) -> None:
        assert validate_destination(Destination(type="gopher")) == [
            "Unsupported destination type: gopher"
        ]

    def test_basic_auth_credentials(self) -> None:
        errors = validate_destination(_remote(auth_type=AuthType.BASIC, username="admin"))
        assert errors == ["Password is required for basic auth"]

    @pytest.mark.parametrize("auth_type", ["bearer", "oauth"])
    def test_token_required(self, auth_type: str) -> None:
        assert validate_destination(_remote(auth_type=auth_type)) == [
            f"Token is required for {auth_type} auth"
        ]

    def test_api_key_header_is_optional(self) -> None:
        assert validate_destination(_remote(auth_type=AuthType.API_KEY, api_key="k")) == []
        assert validate_destination(_remote(auth_type=AuthType.API_KEY)) == ["API key is required"]

    def test_unknown_auth_type(self) -> None:
        assert validate_destination(_remote(auth_type="kerberos")) == [
            "Unsupported auth type: kerberos"
        ]

    def test_collects_every_problem(self) -> None:
        errors = validate_destination(
            _remote(site_url="", auth_type=AuthType.BASIC)
        )
        assert errors == [
            "A valid site URL is required",
            "Username is required for basic auth",
            "Password is required for basic auth",
        ]


class TestDestinationSerialisation:
    def test_public_dict_masks_secrets(self) -> None:
        destination = _remote(auth_type=AuthType.BEARER, token="s3cret")
        public = destination.to_dict(include_secrets=False)
        assert public["config"]["token"] == "***"
        assert destination.to_dict()["config"]["token"] == "s3cret"

    def test_round_trip_keeps_type(self) -> None:
        destination = Destination.from_dict(_remote().to_dict())
        assert destination.destination_type == DestinationType.WORDPRESS_REST
