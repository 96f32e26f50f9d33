"""
Process-scoped cache for the shared Guesty OAuth token.

A single bearer token serves every Guesty call in the process. The cache never
hands out a token inside the safety margin before its expiry, and concurrent
callers that find it empty or near expiry share one issuance call.

An optional TokenStore adds a second tier (the oauth_tokens table) so a
restarted process can reuse a still-valid token instead of issuing a new one.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

import structlog

from sync_guesty.metrics import token_cache_hits, token_cache_misses, token_refreshes
from sync_guesty.utils.datetime import utc_now
from sync_guesty.utils.single_flight import SingleFlight

logger = structlog.get_logger(__name__)

_REFRESH_KEY = "guesty-token"


@dataclass(frozen=True)
class OAuthToken:
    """
    Bearer token with an absolute expiry.

    Attributes:
        access_token: Token string sent as "Authorization: Bearer ..."
        expires_at: UTC instant after which Guesty rejects the token
    """

    access_token: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    """Raw result of a token endpoint call."""

    access_token: str
    expires_in: int


class TokenStore(Protocol):
    def load(self) -> Optional[OAuthToken]: ...

    def save(self, token: OAuthToken) -> None: ...


class TokenCache:
    """
    Single shared OAuth token with coalesced refresh.

    Attributes:
        safety_margin: Tokens closer than this to expiry are treated as expired
        max_ttl: Upper bound on cached lifetime, kept below Guesty's 24h token lifetime

    Example:
        >>> cache = TokenCache(issuer=lambda: create_access_token(cid, secret))
        >>> cache.get_token()
        'eyJhbGciOi...'
        >>> cache.invalidate()  # after a 401
    """

    def __init__(
        self,
        issuer: Callable[[], IssuedToken],
        safety_margin_seconds: int = 300,
        max_ttl_seconds: int = 23 * 3600,
        store: Optional[TokenStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            issuer: Calls the token endpoint; raises on failure
            safety_margin_seconds: Refresh this long before expiry (default: 5 minutes)
            max_ttl_seconds: Cap on cached lifetime (default: 23 hours)
            store: Optional persistent second tier
            clock: Source of "now", injectable for tests
        """
        self._issuer = issuer
        self.safety_margin = timedelta(seconds=safety_margin_seconds)
        self.max_ttl = timedelta(seconds=max_ttl_seconds)
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[OAuthToken] = None
        self._rejected: Optional[str] = None
        self._flight: SingleFlight[OAuthToken] = SingleFlight()

    def _usable(self, token: Optional[OAuthToken]) -> bool:
        return token is not None and self._clock() < token.expires_at - self.safety_margin

    def get_token(self) -> str:
        """
        Return a bearer token that is valid for at least the safety margin.

        Raises:
            Exception: Whatever the issuer raised; the cache stays empty
        """
        with self._lock:
            token = self._token
        if self._usable(token):
            token_cache_hits.labels(tier="memory").inc()
            return token.access_token  # type: ignore[union-attr]

        token_cache_misses.inc()
        return self._flight.do(_REFRESH_KEY, self._refresh).access_token

    def _refresh(self) -> OAuthToken:
        # A caller that lost the race to a just-finished flight finds the new token here
        with self._lock:
            current = self._token
        if self._usable(current):
            return current  # type: ignore[return-value]

        stored = self._load_from_store()
        if stored is not None:
            token_cache_hits.labels(tier="store").inc()
            self._set(stored)
            return stored

        try:
            issued = self._issuer()
        except Exception:
            token_refreshes.labels(status="failure").inc()
            with self._lock:
                self._token = None
            raise

        token_refreshes.labels(status="success").inc()
        lifetime = min(timedelta(seconds=issued.expires_in), self.max_ttl)
        token = OAuthToken(access_token=issued.access_token, expires_at=self._clock() + lifetime)
        self._set(token)
        self._save_to_store(token)

        logger.info("token_refreshed", expires_at=token.expires_at.isoformat())
        return token

    def _set(self, token: OAuthToken) -> None:
        with self._lock:
            self._token = token

    def _load_from_store(self) -> Optional[OAuthToken]:
        if self._store is None:
            return None
        try:
            token = self._store.load()
        except Exception as e:
            logger.warning("token_store_read_failed", error=str(e))
            return None
        if token is None or token.access_token == self._rejected:
            return None
        return token if self._usable(token) else None

    def _save_to_store(self, token: OAuthToken) -> None:
        if self._store is None:
            return
        try:
            self._store.save(token)
        except Exception as e:
            logger.warning("token_store_write_failed", error=str(e))

    def invalidate(self) -> None:
        """
        Drop the cached token.

        Called when Guesty answers 401 so the next call issues a fresh token.
        """
        with self._lock:
            if self._token is not None:
                self._rejected = self._token.access_token
            self._token = None
        logger.info("token_invalidated")

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            token = self._token
        if token is None:
            return {"hasToken": False, "expiresAt": None, "secondsRemaining": 0, "usable": False}
        remaining = (token.expires_at - self._clock()).total_seconds()
        return {
            "hasToken": True,
            "expiresAt": token.expires_at.isoformat(),
            "secondsRemaining": max(0, int(remaining)),
            "usable": self._usable(token),
        }
