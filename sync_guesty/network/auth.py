from typing import Optional

import requests
import structlog
from sqlalchemy.engine import Engine

from sync_guesty.cache import IssuedToken, OAuthToken, TokenCache
from sync_guesty.config import (
    GUESTY_REQUEST_TIMEOUT_SECONDS,
    GUESTY_TOKEN_URL,
    TOKEN_MAX_TTL_SECONDS,
    TOKEN_SAFETY_MARGIN_SECONDS,
    get_guesty_credentials,
)
from sync_guesty.db.readers.cache import get_oauth_token
from sync_guesty.db.writers.cache import upsert_oauth_token
from sync_guesty.errors import UpstreamError
from sync_guesty.utils.datetime import ensure_utc

logger = structlog.get_logger(__name__)

PROVIDER = "guesty"
DEFAULT_EXPIRES_IN = 86400


def create_access_token(client_id: str, client_secret: str) -> IssuedToken:
    """
    Exchange client credentials for a Guesty Open API access token.

    Args:
        client_id (str): Guesty OAuth client id.
        client_secret (str): Guesty OAuth client secret.

    Returns:
        IssuedToken: Bearer token and its lifetime in seconds.

    Raises:
        requests.RequestException: On transport errors or a non-2xx answer.
        UpstreamError: If the answer carries no access_token.
    """
    logger.info("token_requested", client_id=client_id)

    payload = {
        "grant_type": "client_credentials",
        "scope": "open-api",
        "client_id": client_id,
        "client_secret": client_secret,
    }

    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    response: Optional[requests.Response] = None
    try:
        response = requests.post(
            GUESTY_TOKEN_URL,
            data=payload,
            headers=headers,
            timeout=GUESTY_REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "token_request_failed",
            error=str(e),
            status_code=getattr(response, "status_code", None),
            response_text=getattr(response, "text", None),
        )
        raise

    body = response.json()
    token = body.get("access_token")
    if not isinstance(token, str):
        logger.error("token_missing_in_response", response_text=response.text)
        raise UpstreamError("No access_token in Guesty response", endpoint="oauth2/token")

    expires_in = body.get("expires_in")
    return IssuedToken(
        access_token=token,
        expires_in=int(expires_in) if expires_in else DEFAULT_EXPIRES_IN,
    )


def issue_token_from_env() -> IssuedToken:
    """
    Issue a token with the credentials from the environment.

    Raises:
        ConfigurationError: If GUESTY_CLIENT_ID or GUESTY_CLIENT_SECRET is missing.
    """
    client_id, client_secret = get_guesty_credentials()
    return create_access_token(client_id, client_secret)


class DatabaseTokenStore:
    """Persists the shared token in the oauth_tokens singleton row."""

    def __init__(self, engine: Engine, provider: str = PROVIDER):
        self._engine = engine
        self._provider = provider

    def load(self) -> Optional[OAuthToken]:
        with self._engine.connect() as conn:
            row = get_oauth_token(conn, self._provider)
        if not row:
            return None
        return OAuthToken(
            access_token=row["access_token"],
            expires_at=ensure_utc(row["expires_at"]),  # type: ignore[arg-type]
        )

    def save(self, token: OAuthToken) -> None:
        with self._engine.begin() as conn:
            upsert_oauth_token(conn, self._provider, token.access_token, token.expires_at)


def build_token_cache(engine: Optional[Engine] = None) -> TokenCache:
    """
    Build the process token cache backed by env credentials and, optionally, the database.

    Args:
        engine: When given, tokens are shared through the oauth_tokens table.

    Returns:
        TokenCache: Empty cache; the first get_token() issues or loads a token.
    """
    return TokenCache(
        issuer=issue_token_from_env,
        safety_margin_seconds=TOKEN_SAFETY_MARGIN_SECONDS,
        max_ttl_seconds=TOKEN_MAX_TTL_SECONDS,
        store=DatabaseTokenStore(engine) if engine is not None else None,
    )
