"""OIDC authentication provider."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from idbridge.adapters.http import TRANSIENT_ERRORS, build_client, get_with_retry
from idbridge.adapters.sso.id_token import JWKSIdTokenVerifier
from idbridge.core.config import Settings, get_settings
from idbridge.core.exceptions import (
    GENERIC_AUTH_FAILURE,
    AuthenticationError,
    ConfigurationError,
    IdentityProviderError,
)
from idbridge.core.identity import map_identity
from idbridge.core.interfaces import IdTokenVerifier, StateStore
from idbridge.core.sso.types import (
    AuthorizationRequest,
    AuthorizationState,
    OIDCAuthResult,
    OIDCConfig,
    OIDCDiscoveryDocument,
    OIDCTokens,
)

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge.

    Returns:
        (code_verifier, code_challenge), both base64url without padding.
    """
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class OIDCProvider:
    """OIDC authentication provider.

    Handles the authorization code flow for any tenant configuration:
    1. Discover endpoints and build the authorization URL
    2. Validate the callback state and exchange the code for tokens
    3. Verify the ID token, check the nonce and fetch userinfo
    4. Map claims into a normalized identity
    """

    def __init__(
        self,
        state_store: StateStore,
        id_token_verifier: IdTokenVerifier | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            state_store: Single-use storage for authorization states.
            id_token_verifier: ID token verifier. Defaults to JWKS/PyJWT.
            client: HTTP client. One is created if omitted.
            settings: Settings for timeouts, retries and state lifetime.
        """
        self._settings = settings or get_settings()
        self._client = client or build_client(self._settings)
        self._states = state_store
        self._verifier = id_token_verifier or JWKSIdTokenVerifier(self._client, self._settings)
        self._discovery: dict[str, OIDCDiscoveryDocument] = {}

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def discover(self, issuer: str) -> OIDCDiscoveryDocument:
        """Fetch the issuer's discovery document (cached per issuer).

        Raises:
            IdentityProviderError: If the document cannot be fetched or parsed.
        """
        cached = self._discovery.get(issuer)
        if cached is not None:
            return cached

        url = f"{issuer.rstrip('/')}/.well-known/openid-configuration"
        data = await self._get_json(url, "discovery")
        try:
            document = OIDCDiscoveryDocument.model_validate(data)
        except ValueError as e:
            raise IdentityProviderError(f"Invalid discovery document from {issuer}: {e}") from e

        self._discovery[issuer] = document
        logger.debug(f"Loaded OIDC discovery document for {issuer}")
        return document

    async def resolve_endpoints(self, config: OIDCConfig) -> OIDCConfig:
        """Fill endpoints missing from a configuration via discovery.

        Configured endpoints always win over discovered ones.
        """
        if config.authorization_endpoint and config.token_endpoint and config.jwks_uri:
            return config

        document = await self.discover(config.issuer)
        return replace(
            config,
            authorization_endpoint=config.authorization_endpoint or document.authorization_endpoint,
            token_endpoint=config.token_endpoint or document.token_endpoint,
            userinfo_endpoint=config.userinfo_endpoint or document.userinfo_endpoint,
            jwks_uri=config.jwks_uri or document.jwks_uri,
            end_session_endpoint=config.end_session_endpoint or document.end_session_endpoint,
        )

    async def build_authorization_url(
        self,
        config: OIDCConfig,
        redirect_path: str | None = None,
    ) -> AuthorizationRequest:
        """Generate the authorization URL and store its state.

        Args:
            config: Tenant OIDC configuration.
            redirect_path: Application path to return to after login.

        Returns:
            URL to redirect the user to and the opaque state.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
            IdentityProviderError: If discovery fails.
        """
        self._check_config(config)
        config = await self.resolve_endpoints(config)

        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(32)
        params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": " ".join(config.default_scopes),
            "state": state,
        }
        if config.nonce_enabled:
            params["nonce"] = nonce

        code_verifier = None
        if config.pkce_enabled:
            code_verifier, code_challenge = generate_pkce_pair()
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        await self._states.put(
            AuthorizationState(
                state=state,
                nonce=nonce,
                tenant_id=config.tenant_id,
                config_id=config.id,
                redirect_uri=config.redirect_uri,
                created_at=datetime.now(UTC),
                code_verifier=code_verifier,
                redirect_path=redirect_path,
            )
        )

        separator = "&" if "?" in str(config.authorization_endpoint) else "?"
        url = f"{config.authorization_endpoint}{separator}{urlencode(params)}"
        logger.info(f"OIDC login initiated for tenant {config.tenant_id}")
        return AuthorizationRequest(url=url, state=state)

    async def handle_callback(self, config: OIDCConfig, code: str, state: str) -> OIDCAuthResult:
        """Complete a login from the IdP callback.

        The state is consumed before anything else, so a replayed
        callback fails even if the first attempt did too.

        Args:
            config: Tenant OIDC configuration.
            code: Authorization code from the callback.
            state: State from the callback.

        Returns:
            A successful result with identity and tokens, or a failed
            result with a generic error message.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        self._check_config(config)
        stored = await self._states.pop(state)

        try:
            if stored is None:
                raise AuthenticationError("unknown or already used state")
            if stored.tenant_id != config.tenant_id or stored.config_id != config.id:
                raise AuthenticationError("state was issued for another configuration")
            if stored.is_expired(self._settings.state_max_age_seconds):
                raise AuthenticationError(
                    f"state expired after {stored.age_seconds():.0f} seconds"
                )

            config = await self.resolve_endpoints(config)
            tokens = await self.exchange_code(
                config, code, stored.code_verifier, redirect_uri=stored.redirect_uri
            )
            if not tokens.id_token:
                raise AuthenticationError("token response has no id_token")

            claims = await self._verifier.verify(
                tokens.id_token,
                issuer=config.issuer,
                client_id=config.client_id,
                client_secret=config.client_secret,
                jwks_uri=config.jwks_uri,
            )
            if config.nonce_enabled and claims.get("nonce") != stored.nonce:
                raise AuthenticationError("id_token nonce does not match")

            merged = dict(claims)
            if config.userinfo_endpoint:
                userinfo = await self.get_user_info(config, tokens.access_token)
                if userinfo.get("sub") != claims.get("sub"):
                    raise AuthenticationError("userinfo subject does not match id_token")
                merged.update(userinfo)

            identity = map_identity(str(claims["sub"]), merged, config.claim_mapping)
        except AuthenticationError as e:
            logger.warning(f"OIDC callback rejected for tenant {config.tenant_id}: {e.reason}")
            return OIDCAuthResult(success=False, error=GENERIC_AUTH_FAILURE)
        except IdentityProviderError as e:
            logger.warning(f"OIDC provider error for tenant {config.tenant_id}: {e}")
            return OIDCAuthResult(success=False, error=GENERIC_AUTH_FAILURE)

        logger.info(f"OIDC login completed for tenant {config.tenant_id}")
        return OIDCAuthResult(
            success=True,
            identity=identity,
            tokens=tokens,
            redirect_path=stored.redirect_path,
        )

    async def exchange_code(
        self,
        config: OIDCConfig,
        code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> OIDCTokens:
        """Exchange an authorization code for tokens. Never retried.

        Raises:
            IdentityProviderError: If the token endpoint rejects the request.
        """
        config = await self.resolve_endpoints(config)
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or config.redirect_uri,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        return self._parse_tokens(await self._post_token(config, data))

    async def refresh_tokens(self, config: OIDCConfig, refresh_token: str) -> OIDCTokens:
        """Get new tokens with a refresh token.

        The old refresh token is kept when the IdP does not rotate it.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
            IdentityProviderError: If the token endpoint rejects the request.
        """
        self._check_config(config)
        config = await self.resolve_endpoints(config)
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        tokens = self._parse_tokens(await self._post_token(config, data))
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    async def get_user_info(self, config: OIDCConfig, access_token: str) -> dict[str, Any]:
        """Fetch user info from the userinfo endpoint.

        Raises:
            IdentityProviderError: If the request fails.
        """
        config = await self.resolve_endpoints(config)
        if not config.userinfo_endpoint:
            raise IdentityProviderError(f"{config.issuer} has no userinfo endpoint")
        return await self._get_json(
            config.userinfo_endpoint,
            "userinfo",
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def build_logout_url(self, config: OIDCConfig, id_token_hint: str | None = None) -> str | None:
        """Build the RP-initiated logout URL.

        Uses the configured end-session endpoint, or the one from a
        previously fetched discovery document.

        Returns:
            The URL, or None if the provider has no end-session endpoint.
        """
        endpoint = config.end_session_endpoint
        if not endpoint:
            document = self._discovery.get(config.issuer)
            endpoint = document.end_session_endpoint if document else None
        if not endpoint:
            return None

        params = {"client_id": config.client_id}
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        if config.post_logout_redirect_uri:
            params["post_logout_redirect_uri"] = config.post_logout_redirect_uri
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    # Helpers

    @staticmethod
    def _check_config(config: OIDCConfig) -> None:
        if not config.is_enabled:
            raise ConfigurationError(f"OIDC is disabled for tenant {config.tenant_id}")
        missing = [
            name
            for name in ("issuer", "client_id", "client_secret", "redirect_uri")
            if not getattr(config, name)
        ]
        if missing:
            raise ConfigurationError(f"OIDC configuration incomplete: {', '.join(missing)}")

    async def _post_token(self, config: OIDCConfig, data: dict[str, str]) -> dict[str, Any]:
        if not config.token_endpoint:
            raise IdentityProviderError(f"{config.issuer} has no token endpoint")
        try:
            response = await self._client.post(
                config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except TRANSIENT_ERRORS as e:
            raise IdentityProviderError(f"Token request failed: {e}", retryable=True) from e
        except httpx.HTTPStatusError as e:
            raise IdentityProviderError(
                f"Token request failed: HTTP {e.response.status_code}"
            ) from e
        except ValueError as e:
            raise IdentityProviderError(f"Token response is not JSON: {e}") from e
        return payload

    @staticmethod
    def _parse_tokens(data: dict[str, Any]) -> OIDCTokens:
        if not data.get("access_token"):
            raise IdentityProviderError("Token response has no access_token")
        return OIDCTokens(
            access_token=data["access_token"],
            id_token=data.get("id_token"),
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
        )

    async def _get_json(self, url: str, what: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await get_with_retry(
                self._client, url, retries=self._settings.http_retries, **kwargs
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except TRANSIENT_ERRORS as e:
            raise IdentityProviderError(f"OIDC {what} request failed: {e}", retryable=True) from e
        except httpx.HTTPStatusError as e:
            raise IdentityProviderError(
                f"OIDC {what} request failed: HTTP {e.response.status_code}",
                retryable=e.response.status_code >= 500,
            ) from e
        except ValueError as e:
            raise IdentityProviderError(f"OIDC {what} response is not JSON: {e}") from e
        return data
