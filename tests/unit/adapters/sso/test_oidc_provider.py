"""Unit tests for the OIDC authentication provider."""

from __future__ import annotations

import base64
import hashlib
import uuid
from collections.abc import AsyncIterator
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from idbridge.adapters.sso.oidc_provider import OIDCProvider, generate_pkce_pair
from idbridge.core.config import Settings
from idbridge.core.exceptions import GENERIC_AUTH_FAILURE, ConfigurationError
from idbridge.core.sso import AuthorizationState, InMemoryStateStore, OIDCConfig
from tests.fixtures.oidc import (
    OIDC_ISSUER,
    OIDC_REDIRECT_URI,
    FakeIdentityProvider,
    StaticIdTokenVerifier,
)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    """Return an empty state store."""
    return InMemoryStateStore()


@pytest.fixture
def id_token_verifier() -> StaticIdTokenVerifier:
    """Return a verifier yielding claims for user-1."""
    return StaticIdTokenVerifier({"iss": OIDC_ISSUER, "aud": "client-1", "sub": "user-1"})


@pytest.fixture
async def provider(
    fake_idp: FakeIdentityProvider,
    state_store: InMemoryStateStore,
    id_token_verifier: StaticIdTokenVerifier,
) -> AsyncIterator[OIDCProvider]:
    """Return a provider talking to the fake IdP."""
    provider = OIDCProvider(
        state_store,
        id_token_verifier=id_token_verifier,
        client=fake_idp.client(),
        settings=Settings(),
    )
    yield provider
    await provider.aclose()


def query_params(url: str) -> dict[str, str]:
    """Flatten the query string of a URL."""
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


async def start_login(
    provider: OIDCProvider,
    config: OIDCConfig,
    verifier: StaticIdTokenVerifier,
    redirect_path: str | None = None,
) -> dict[str, str]:
    """Begin a login and make the ID token carry the issued nonce."""
    request = await provider.build_authorization_url(config, redirect_path=redirect_path)
    params = query_params(request.url)
    verifier.claims["nonce"] = params["nonce"]
    assert params["state"] == request.state
    return params


class TestAuthorizationUrl:
    """Tests for OIDCProvider.build_authorization_url."""

    async def test_url_parameters(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        state_store: InMemoryStateStore,
    ) -> None:
        """Test the authorization request parameters."""
        request = await provider.build_authorization_url(oidc_config)

        assert request.url.startswith(f"{OIDC_ISSUER}/authorize?")
        params = query_params(request.url)
        assert params["response_type"] == "code"
        assert params["client_id"] == "client-1"
        assert params["redirect_uri"] == OIDC_REDIRECT_URI
        assert params["scope"] == "openid email profile"
        assert params["code_challenge_method"] == "S256"
        assert params["nonce"]
        assert len(state_store) == 1

    async def test_pkce_and_nonce_can_be_disabled(
        self, provider: OIDCProvider, oidc_config: OIDCConfig
    ) -> None:
        """Test that disabled PKCE and nonce leave their parameters out."""
        config = replace(oidc_config, pkce_enabled=False, nonce_enabled=False)

        params = query_params((await provider.build_authorization_url(config)).url)

        assert "code_challenge" not in params
        assert "nonce" not in params

    async def test_discovery_is_cached(
        self, provider: OIDCProvider, oidc_config: OIDCConfig, fake_idp: FakeIdentityProvider
    ) -> None:
        """Test that discovery runs once per issuer."""
        await provider.build_authorization_url(oidc_config)
        await provider.build_authorization_url(oidc_config)

        assert fake_idp.count("/.well-known/openid-configuration") == 1

    async def test_configured_endpoints_skip_discovery(
        self, provider: OIDCProvider, oidc_config: OIDCConfig, fake_idp: FakeIdentityProvider
    ) -> None:
        """Test that a fully configured provider is never discovered."""
        config = replace(
            oidc_config,
            authorization_endpoint="https://sso.example.com/auth",
            token_endpoint="https://sso.example.com/token",
            jwks_uri="https://sso.example.com/keys",
        )

        request = await provider.build_authorization_url(config)

        assert request.url.startswith("https://sso.example.com/auth?")
        assert fake_idp.requests == []

    async def test_disabled_config(self, provider: OIDCProvider, oidc_config: OIDCConfig) -> None:
        """Test that a disabled configuration raises."""
        with pytest.raises(ConfigurationError):
            await provider.build_authorization_url(replace(oidc_config, is_enabled=False))


class TestHandleCallback:
    """Tests for OIDCProvider.handle_callback."""

    async def test_successful_login(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        fake_idp: FakeIdentityProvider,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test the whole authorization code flow."""
        params = await start_login(provider, oidc_config, id_token_verifier, "/reports")

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is True
        assert result.redirect_path == "/reports"
        assert result.identity is not None
        assert result.identity.external_id == "user-1"
        assert result.identity.email == "jane@example.com"
        assert result.identity.display_name == "Jane Doe"
        assert result.identity.groups == ["Admins"]
        assert result.tokens is not None
        assert result.tokens.refresh_token == "refresh-1"

        form = fake_idp.token_forms[0]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "code-1"
        assert form["redirect_uri"] == OIDC_REDIRECT_URI
        digest = hashlib.sha256(form["code_verifier"].encode()).digest()
        assert base64.urlsafe_b64encode(digest).rstrip(b"=").decode() == params["code_challenge"]

        token, kwargs = id_token_verifier.calls[0]
        assert token == "id-token-1"
        assert kwargs["issuer"] == OIDC_ISSUER
        assert kwargs["client_id"] == "client-1"
        assert kwargs["jwks_uri"] == f"{OIDC_ISSUER}/jwks"

    async def test_replayed_state(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        fake_idp: FakeIdentityProvider,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test that a state cannot be used twice."""
        params = await start_login(provider, oidc_config, id_token_verifier)
        await provider.handle_callback(oidc_config, "code-1", params["state"])

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is False
        assert result.error == GENERIC_AUTH_FAILURE
        assert fake_idp.count("/token") == 1

    async def test_unknown_state(self, provider: OIDCProvider, oidc_config: OIDCConfig) -> None:
        """Test that an unknown state fails."""
        result = await provider.handle_callback(oidc_config, "code-1", "forged")

        assert result.success is False

    async def test_expired_state(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        state_store: InMemoryStateStore,
        fake_idp: FakeIdentityProvider,
    ) -> None:
        """Test that a state older than its lifetime fails before the code exchange."""
        await state_store.put(
            AuthorizationState(
                state="old",
                nonce="n",
                tenant_id=oidc_config.tenant_id,
                config_id=oidc_config.id,
                redirect_uri=OIDC_REDIRECT_URI,
                created_at=datetime.now(UTC) - timedelta(minutes=11),
            )
        )

        result = await provider.handle_callback(oidc_config, "code-1", "old")

        assert result.success is False
        assert fake_idp.count("/token") == 0
        assert len(state_store) == 0

    async def test_state_from_other_config(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        id_token_verifier: StaticIdTokenVerifier,
        fake_idp: FakeIdentityProvider,
    ) -> None:
        """Test that a state is bound to the configuration that issued it."""
        params = await start_login(provider, oidc_config, id_token_verifier)
        other = replace(oidc_config, id=uuid.uuid4())

        result = await provider.handle_callback(other, "code-1", params["state"])

        assert result.success is False
        assert fake_idp.count("/token") == 0

    async def test_nonce_mismatch(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test that an ID token for another login fails."""
        params = await start_login(provider, oidc_config, id_token_verifier)
        id_token_verifier.claims["nonce"] = "another-nonce"

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is False

    async def test_userinfo_subject_mismatch(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        fake_idp: FakeIdentityProvider,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test that userinfo for another subject fails."""
        fake_idp.userinfo["sub"] = "user-2"
        params = await start_login(provider, oidc_config, id_token_verifier)

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is False

    async def test_token_endpoint_error(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        fake_idp: FakeIdentityProvider,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test that a rejected code exchange fails the login without retries."""
        fake_idp.token_status = 400
        params = await start_login(provider, oidc_config, id_token_verifier)

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is False
        assert result.error == GENERIC_AUTH_FAILURE
        assert fake_idp.count("/token") == 1
        assert id_token_verifier.calls == []

    async def test_missing_id_token(
        self,
        provider: OIDCProvider,
        oidc_config: OIDCConfig,
        fake_idp: FakeIdentityProvider,
        id_token_verifier: StaticIdTokenVerifier,
    ) -> None:
        """Test that a token response without an ID token fails."""
        del fake_idp.token_response["id_token"]
        params = await start_login(provider, oidc_config, id_token_verifier)

        result = await provider.handle_callback(oidc_config, "code-1", params["state"])

        assert result.success is False


class TestTokensAndLogout:
    """Tests for refresh, userinfo and logout."""

    async def test_refresh_keeps_refresh_token(
        self, provider: OIDCProvider, oidc_config: OIDCConfig, fake_idp: FakeIdentityProvider
    ) -> None:
        """Test that a non-rotating IdP keeps the existing refresh token."""
        fake_idp.token_response = {"access_token": "access-2", "expires_in": 60}

        tokens = await provider.refresh_tokens(oidc_config, "refresh-0")

        assert tokens.access_token == "access-2"
        assert tokens.refresh_token == "refresh-0"
        assert tokens.expires_in == 60
        assert fake_idp.token_forms[0]["grant_type"] == "refresh_token"

    async def test_get_user_info(
        self, provider: OIDCProvider, oidc_config: OIDCConfig, fake_idp: FakeIdentityProvider
    ) -> None:
        """Test that userinfo is requested with the access token."""
        info = await provider.get_user_info(oidc_config, "access-1")

        assert info["sub"] == "user-1"
        request = next(r for r in fake_idp.requests if r.url.path == "/userinfo")
        assert request.headers["Authorization"] == "Bearer access-1"

    def test_logout_url(self, provider: OIDCProvider, oidc_config: OIDCConfig) -> None:
        """Test the RP-initiated logout URL."""
        config = replace(
            oidc_config,
            end_session_endpoint=f"{OIDC_ISSUER}/logout",
            post_logout_redirect_uri="https://app.example.com/",
        )

        url = provider.build_logout_url(config, id_token_hint="id-token-1")

        assert url is not None
        params = query_params(url)
        assert params["id_token_hint"] == "id-token-1"
        assert params["post_logout_redirect_uri"] == "https://app.example.com/"

    def test_logout_url_without_endpoint(
        self, provider: OIDCProvider, oidc_config: OIDCConfig
    ) -> None:
        """Test that no URL is built without an end-session endpoint."""
        assert provider.build_logout_url(oidc_config) is None


class TestPkce:
    """Tests for PKCE pair generation."""

    def test_challenge_is_s256_of_verifier(self) -> None:
        """Test the S256 relation and URL-safe alphabet."""
        verifier, challenge = generate_pkce_pair()

        digest = hashlib.sha256(verifier.encode()).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
        assert "=" not in verifier
        assert 43 <= len(verifier) <= 128

    def test_pairs_are_unique(self) -> None:
        """Test that every pair is fresh."""
        assert generate_pkce_pair() != generate_pkce_pair()
