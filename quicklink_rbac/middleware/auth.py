"""
JWT authentication and authorization dependencies.

Bearer tokens carry only the principal id in ``sub``. Role, access level and
permission claims found in a token are ignored: every request resolves the
principal and its role from the store, and mutations are gated by the
server-side enforcement adapter.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Request, HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from quicklink_rbac.config.jwt_config import JWTSettings, get_jwt_settings
from quicklink_rbac.config.logging import app_logger
from quicklink_rbac.core.enforcement import AccessDecision
from quicklink_rbac.core.errors import CapabilityDenied
from quicklink_rbac.core.models import AuthContext
from quicklink_rbac.core.service import RBACService

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """JWT token payload data model."""
    sub: str
    token_type: str = "access"
    exp: int
    iat: int
    jti: Optional[str] = None


class JWTAuthenticator:
    """Issues and verifies principal access tokens."""

    def __init__(self, settings: Optional[JWTSettings] = None):
        self.settings = settings or get_jwt_settings()
        self._revoked_tokens: set = set()

    def create_access_token(self, principal_id: str, expires_delta: Optional[timedelta] = None) -> str:
        """
        Create a new access token for ``principal_id``.

        Args:
            principal_id: Principal the token identifies
            expires_delta: Optional custom expiration time

        Returns:
            Encoded JWT access token
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.settings.access_token_expire_minutes))

        payload = {
            "sub": principal_id,
            "token_type": "access",
            "exp": expire,
            "iat": now,
            "iss": self.settings.token_issuer,
            "aud": self.settings.token_audience,
            "jti": f"{principal_id}_{int(time.time() * 1000)}",
        }

        return jwt.encode(payload, self.settings.secret_key, algorithm=self.settings.algorithm)

    def verify_token(self, token: str) -> TokenData:
        """
        Verify and decode JWT token.

        Raises:
            HTTPException: If token is invalid, expired, or revoked
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.secret_key,
                algorithms=[self.settings.algorithm],
                audience=self.settings.token_audience,
                issuer=self.settings.token_issuer,
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"}
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT validation failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
                headers={"WWW-Authenticate": "Bearer"}
            )

        jti = payload.get("jti")
        if jti and jti in self._revoked_tokens:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has been revoked",
                headers={"WWW-Authenticate": "Bearer"}
            )
        if payload.get("token_type") != "access" or not payload.get("sub"):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type",
                headers={"WWW-Authenticate": "Bearer"}
            )

        return TokenData(**payload)

    def revoke_token(self, jti: str) -> None:
        """Revoke a token by adding its JTI to the revoked list."""
        self._revoked_tokens.add(jti)
        logger.info(f"Token revoked: {jti}")


# FastAPI dependencies

def get_rbac_service(request: Request) -> RBACService:
    return request.app.state.rbac


def get_authenticator(request: Request) -> JWTAuthenticator:
    return request.app.state.authenticator


async def get_token_required(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """Extract token from Authorization header (required)."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return credentials.credentials


async def get_current_principal_id(
    token: str = Depends(get_token_required),
    authenticator: JWTAuthenticator = Depends(get_authenticator),
) -> str:
    return authenticator.verify_token(token).sub


async def get_auth_context(
    principal_id: str = Depends(get_current_principal_id),
    service: RBACService = Depends(get_rbac_service),
) -> AuthContext:
    """Session snapshot of the caller; unknown principals are unauthenticated."""
    ctx = service.cache.get(principal_id)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown principal",
            headers={"WWW-Authenticate": "Bearer"}
        )
    return ctx


def enforce(service: RBACService, principal_id: str, resource: str, action: str,
            target_id: Optional[str] = None) -> AccessDecision:
    """Run the enforcement adapter and raise CapabilityDenied on denial."""
    decision = service.enforcement.authorize(principal_id, resource, action, target_id)
    app_logger.log_access_decision(
        principal_id, resource, action, decision.granted, rule=decision.rule, reason=decision.reason,
        target_id=target_id,
    )
    if not decision.granted:
        raise CapabilityDenied(f"Access to {resource}.{action} denied")
    return decision


def RequirePermission(resource: str, action: str, target_param: Optional[str] = None):
    """FastAPI dependency enforcing ``resource.action`` for the caller.

    ``target_param`` names a path parameter holding the target document id.
    """
    async def check_permission(
        request: Request,
        principal_id: str = Depends(get_current_principal_id),
        service: RBACService = Depends(get_rbac_service),
    ) -> str:
        target_id = request.path_params.get(target_param) if target_param else None
        enforce(service, principal_id, resource, action, target_id)
        return principal_id
    return check_permission
