"""
FastAPI dependency providers.

Routes never import the engine or the caches directly; they depend on
get_services, which tests replace through app.dependency_overrides.

Testing Example:
    >>> services = build_services(test_engine, catalog)
    >>> app.dependency_overrides[get_services] = lambda: services
    >>> client = TestClient(app)
"""

from __future__ import annotations

import hmac
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.engine import Engine

from sync_guesty.config import get_admin_api_token
from sync_guesty.errors import ConfigurationError
from sync_guesty.state import Services

logger = structlog.get_logger(__name__)


def get_services(request: Request) -> Services:
    """
    Return the process service container built at startup.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


def get_db_engine(services: Services = Depends(get_services)) -> Engine:
    return services.engine


admin_bearer = HTTPBearer(auto_error=False)


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_bearer),
) -> None:
    """
    Guard the operator endpoints with the shared ADMIN_API_TOKEN bearer token.

    Raises:
        HTTPException: 401 if the token is missing or wrong,
            500 if ADMIN_API_TOKEN is not configured
    """
    try:
        expected = get_admin_api_token()
    except ConfigurationError:
        logger.error("admin_api_token_missing")
        raise HTTPException(status_code=500, detail="Admin token not configured")

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        logger.warning("admin_request_unauthorized")
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
