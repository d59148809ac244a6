from __future__ import annotations
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, MutableMapping, Optional

SESSION_KEY = "principal"


@dataclass(frozen=True)
class SessionState:
    """Authenticated principal carried by the session cookie.

    Immutable: a token refresh builds a new state via ``refreshed`` and the
    guard writes it back to the request's session.
    """

    user_id: str
    claims: Mapping[str, Any] = field(default_factory=dict)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))

    def is_expired(self, now: Optional[float] = None) -> bool:
        # Compared in whole seconds, like the exp claim itself.
        if self.expires_at is None:
            return False
        now = int(time.time()) if now is None else int(now)
        return now > self.expires_at

    @classmethod
    def from_session(cls, session: Mapping[str, Any]) -> Optional["SessionState"]:
        raw = session.get(SESSION_KEY) if session else None
        if not raw or not raw.get("user_id"):
            return None
        expires_at = raw.get("expires_at")
        return cls(
            user_id=str(raw["user_id"]),
            claims=raw.get("claims") or {},
            access_token=raw.get("access_token"),
            refresh_token=raw.get("refresh_token"),
            expires_at=int(expires_at) if expires_at is not None else None,
        )

    @classmethod
    def from_tokens(cls, tokens, previous: Optional["SessionState"] = None) -> "SessionState":
        claims = tokens.claims()
        user_id = claims.get("sub") or (previous.user_id if previous else None)
        if not user_id:
            raise ValueError("token response carries no subject")
        refresh_token = tokens.refresh_token or (previous.refresh_token if previous else None)
        return cls(
            user_id=str(user_id),
            claims=claims,
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            expires_at=tokens.expires_at(),
        )

    def to_session(self) -> dict:
        return {
            "user_id": self.user_id,
            "claims": dict(self.claims),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    def store(self, session: MutableMapping[str, Any]) -> None:
        session[SESSION_KEY] = self.to_session()
