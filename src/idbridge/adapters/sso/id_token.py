"""OIDC ID token verification against the provider's JWKS."""

from __future__ import annotations

import logging
from typing import Any

import httpx
import jwt

from idbridge.adapters.http import TRANSIENT_ERRORS, build_client, get_with_retry
from idbridge.core.config import Settings, get_settings
from idbridge.core.exceptions import IdentityProviderError, SignatureVerificationError

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)
SYMMETRIC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


class JWKSIdTokenVerifier:
    """IdTokenVerifier using PyJWT.

    Asymmetric tokens are checked with the key matching the token's
    ``kid`` in the provider JWKS; the JWKS is refetched once when the
    ``kid`` is unknown, to follow key rotation. HMAC-signed tokens are
    checked with the client secret.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
        leeway_seconds: int = 60,
    ) -> None:
        """Initialize the verifier.

        Args:
            client: HTTP client for JWKS fetches. One is created if omitted.
            settings: Settings for timeouts and retries.
            leeway_seconds: Clock skew tolerated on exp/iat/nbf.
        """
        self._settings = settings or get_settings()
        self._client = client or build_client(self._settings)
        self._leeway = leeway_seconds
        self._jwks: dict[str, jwt.PyJWKSet] = {}

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def verify(
        self,
        id_token: str,
        *,
        issuer: str,
        client_id: str,
        client_secret: str | None,
        jwks_uri: str | None,
    ) -> dict[str, Any]:
        """Verify an ID token and return its claims.

        Args:
            id_token: Compact JWT from the token response.
            issuer: Expected ``iss``.
            client_id: Expected ``aud``.
            client_secret: Key for HMAC-signed tokens.
            jwks_uri: Provider key set for asymmetric tokens.

        Returns:
            Verified claims.

        Raises:
            SignatureVerificationError: If the token is malformed, signed
                with an unknown key, or fails iss/aud/exp checks.
            IdentityProviderError: If the JWKS cannot be fetched.
        """
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.DecodeError as e:
            raise SignatureVerificationError(f"malformed id_token: {e}") from e

        algorithm = header.get("alg")
        if algorithm in SYMMETRIC_ALGORITHMS:
            if not client_secret:
                raise SignatureVerificationError("HMAC id_token without a client secret")
            key: Any = client_secret
        elif algorithm in ASYMMETRIC_ALGORITHMS:
            if not jwks_uri:
                raise SignatureVerificationError("provider publishes no jwks_uri")
            key = await self._signing_key(jwks_uri, header.get("kid"))
        else:
            raise SignatureVerificationError(f"id_token algorithm {algorithm!r} not allowed")

        try:
            claims: dict[str, Any] = jwt.decode(
                id_token,
                key=key,
                algorithms=[algorithm],
                audience=client_id,
                issuer=issuer,
                leeway=self._leeway,
                options={"require": ["iss", "aud", "exp", "sub"]},
            )
        except jwt.InvalidTokenError as e:
            raise SignatureVerificationError(f"id_token rejected: {e}") from e
        return claims

    async def _signing_key(self, jwks_uri: str, kid: str | None) -> Any:
        for refresh in (False, True):
            key_set = await self._key_set(jwks_uri, refresh=refresh)
            keys = [key for key in key_set.keys if kid is None or key.key_id == kid]
            if len(keys) == 1 or (keys and kid is not None):
                return keys[0].key
            if kid is None and len(keys) > 1:
                raise SignatureVerificationError("id_token has no kid and the JWKS has many keys")
        raise SignatureVerificationError(f"no JWKS key with kid {kid!r}")

    async def _key_set(self, jwks_uri: str, refresh: bool = False) -> jwt.PyJWKSet:
        if not refresh and jwks_uri in self._jwks:
            return self._jwks[jwks_uri]

        try:
            response = await get_with_retry(
                self._client, jwks_uri, retries=self._settings.http_retries
            )
            response.raise_for_status()
            key_set = jwt.PyJWKSet.from_dict(response.json())
        except TRANSIENT_ERRORS as e:
            raise IdentityProviderError(f"JWKS fetch failed: {e}", retryable=True) from e
        except httpx.HTTPStatusError as e:
            raise IdentityProviderError(
                f"JWKS fetch failed: HTTP {e.response.status_code}",
                retryable=e.response.status_code >= 500,
            ) from e
        except (jwt.PyJWKSetError, ValueError) as e:
            raise IdentityProviderError(f"JWKS document unusable: {e}") from e

        logger.debug(f"Loaded {len(key_set.keys)} signing keys from {jwks_uri}")
        self._jwks[jwks_uri] = key_set
        return key_set
