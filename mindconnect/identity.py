"""OpenID Connect client for the external identity provider.

Covers the three calls the app needs: discovery, the authorization-code
exchange and the refresh grant. Endpoints come from the provider's
discovery document, so nothing provider-specific lives here.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import jwt
import requests

from . import config

logger = logging.getLogger(__name__)

DISCOVERY_TTL_SECONDS = 3600


class IdentityProviderError(RuntimeError):
    pass


@dataclass(frozen=True)
class TokenSet:
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None
    received_at: float = 0.0

    @classmethod
    def from_response(cls, payload: dict) -> "TokenSet":
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise IdentityProviderError("token response has no access_token")
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            id_token=payload.get("id_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            received_at=time.time(),
        )

    def claims(self) -> dict:
        # Received straight from the token endpoint over TLS, so the
        # signature isn't re-checked here.
        if not self.id_token:
            return {}
        try:
            return jwt.decode(self.id_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise IdentityProviderError(f"malformed id_token: {e}") from e

    def expires_at(self) -> Optional[int]:
        exp = self.claims().get("exp")
        if exp is not None:
            return int(exp)
        if self.expires_in is not None:
            return int(self.received_at) + self.expires_in
        return None


def generate_pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class IdentityProvider:
    """Thin requests-based OIDC client."""

    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        client_secret: Optional[str] = None,
        timeout: float = 10,
        http: Optional[requests.Session] = None,
    ):
        if not issuer_url or not client_id:
            raise ValueError("issuer_url and client_id are required")
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.http = http or requests.Session()
        self._metadata: Optional[dict] = None
        self._metadata_fetched_at = 0.0

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise IdentityProviderError(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            raise IdentityProviderError(f"{method} {url} returned invalid JSON") from e

    def metadata(self) -> dict:
        now = time.time()
        if self._metadata is None or now - self._metadata_fetched_at > DISCOVERY_TTL_SECONDS:
            url = f"{self.issuer_url}/.well-known/openid-configuration"
            self._metadata = self._request("GET", url)
            self._metadata_fetched_at = now
        return self._metadata

    def _endpoint(self, name: str) -> str:
        url = self.metadata().get(name)
        if not url:
            raise IdentityProviderError(f"provider metadata has no {name}")
        return url

    def _token_request(self, data: dict) -> TokenSet:
        data = dict(data, client_id=self.client_id)
        auth = (self.client_id, self.client_secret) if self.client_secret else None
        payload = self._request(
            "POST",
            self._endpoint("token_endpoint"),
            data=data,
            auth=auth,
            headers={"Accept": "application/json"},
        )
        return TokenSet.from_response(payload)

    def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": config.OIDC_SCOPE,
            "prompt": "login consent",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self._endpoint('authorization_endpoint')}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str, code_verifier: str) -> TokenSet:
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        })

    def refresh(self, refresh_token: str) -> TokenSet:
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def end_session_url(self, post_logout_redirect_uri: str) -> Optional[str]:
        endpoint = self.metadata().get("end_session_endpoint")
        if not endpoint:
            return None
        params = {"client_id": self.client_id, "post_logout_redirect_uri": post_logout_redirect_uri}
        return f"{endpoint}?{urlencode(params)}"


_PROVIDER: Optional[IdentityProvider] = None


def get_identity_provider() -> Optional[IdentityProvider]:
    """FastAPI dependency; None when no provider is configured (local login)."""
    global _PROVIDER
    if not config.oidc_enabled():
        return None
    if _PROVIDER is None:
        _PROVIDER = IdentityProvider(
            config.OIDC_ISSUER_URL,
            config.OIDC_CLIENT_ID,
            config.OIDC_CLIENT_SECRET,
            timeout=config.OIDC_HTTP_TIMEOUT,
        )
        logger.info("OIDC provider configured: %s", config.OIDC_ISSUER_URL)
    return _PROVIDER
