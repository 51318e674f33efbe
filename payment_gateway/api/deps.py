"""FastAPI dependencies shared by the routers."""
from functools import lru_cache
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payment_gateway.config import Settings, get_settings
from payment_gateway.core.authorization import PaymentAuthorizer, Principal
from payment_gateway.core.service import PaymentService
from payment_gateway.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)

# auto_error=False so a missing header gets the same 401 body as a bad token
bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache()
def get_payment_service() -> PaymentService:
    """
    Get the process-wide payment service.

    Built on first use so that importing the app does not touch gateways.
    """
    return PaymentService.create(get_settings())


def get_health_check(service: PaymentService = Depends(get_payment_service)) -> HealthCheck:
    return HealthCheck(service.factory, service.circuit_breakers)


@lru_cache()
def get_authorizer() -> PaymentAuthorizer:
    return PaymentAuthorizer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Verify the bearer token and return the caller.

    Raises:
        HTTPException: 401 if the token is missing, expired or invalid
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    if not settings.jwt_secret:
        logger.error("jwt_secret_not_configured")
        raise _unauthorized("Authentication is not configured")

    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise _unauthorized("Invalid authentication token")

    principal = Principal.from_claims(claims)
    structlog.contextvars.bind_contextvars(subject=principal.subject)
    return principal
