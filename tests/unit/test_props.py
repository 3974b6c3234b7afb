"""Tests for Props binding and sealing."""

import pytest
from pydantic import ValidationError

from youtube_mcp_gateway.errors import Unauthenticated
from youtube_mcp_gateway.models import Props, UpstreamGrant
from youtube_mcp_gateway.props import PropsSealer, bind_props


@pytest.fixture
def upstream_grant():
    return UpstreamGrant(
        access_token="ya29.user-token",
        refresh_token="1//refresh",
        expires_in=3599,
        scopes=["openid"],
        email="ada@example.com",
        name="Ada",
        subject="sub-1",
    )


class TestBindProps:
    def test_copies_identity_and_access_token(self, upstream_grant):
        props = bind_props(upstream_grant)
        assert props == Props(
            access_token="ya29.user-token",
            email="ada@example.com",
            name="Ada",
            subject="sub-1",
        )

    def test_drops_refresh_token(self, upstream_grant):
        dumped = bind_props(upstream_grant).model_dump()
        assert "refresh_token" not in dumped
        assert "1//refresh" not in str(dumped)

    def test_props_are_frozen(self, upstream_grant):
        props = bind_props(upstream_grant)
        with pytest.raises(ValidationError):
            props.access_token = "other"

    def test_repr_hides_access_token(self, upstream_grant):
        props = bind_props(upstream_grant)
        assert "ya29" not in repr(props)
        assert "ya29" not in str(props)


class TestPropsSealer:
    def test_seal_round_trip(self, upstream_grant):
        sealer = PropsSealer("secret-a")
        props = bind_props(upstream_grant)
        sealed = sealer.seal(props)
        assert "ya29" not in sealed
        assert sealer.unseal(sealed) == props

    def test_other_key_cannot_unseal(self, upstream_grant):
        sealed = PropsSealer("secret-a").seal(bind_props(upstream_grant))
        with pytest.raises(Unauthenticated):
            PropsSealer("secret-b").unseal(sealed)

    def test_corrupt_ciphertext(self):
        with pytest.raises(Unauthenticated):
            PropsSealer("secret-a").unseal("not-a-fernet-token")

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            PropsSealer("")
