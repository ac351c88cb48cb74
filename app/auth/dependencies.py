"""
FastAPI Authentication Dependencies
-----------------------------------
Request-level authentication and per-route tenant authorization.

AuthenticationGate runs for every request (registered as an application
dependency). It lets allow-listed paths through, otherwise it:

1. extracts the bearer token from the Authorization header
2. verifies it as an access token
3. loads the principal with resolved memberships
4. rejects archived principals and principals without any usable membership
5. stores the principal on ``request.state.user``

Tenant authorization is a separate, per-route step: PermissionChecker
resolves the ``{org}`` path parameter against the principal's memberships
through the PermissionEngine and stores the result on ``request.state.auth``.

Usage:
    require_service_create = PermissionChecker([Permission.SERVICE_CREATE])

    @router.post("/{org}/services")
    async def create_service(auth: RequestAuth = Depends(require_service_create)):
        ...
"""

from fnmatch import fnmatch
from typing import List, Optional, Sequence

from fastapi import Depends, Request
from loguru import logger

from app.auth.jwt_utils import TokenCodec
from app.auth.membership import MembershipResolver
from app.auth.permissions import PermissionEngine, RequestAuth
from app.auth.providers import (
    get_membership_resolver,
    get_permission_engine,
    get_token_codec,
    get_users_service,
)
from app.core.config_manager import settings
from app.core.exceptions import UnauthorizedError
from app.models.identity_models import Principal
from app.psql_db_services.users_service import UsersService


class AuthenticationGate:
    def __init__(
        self,
        token_codec: TokenCodec,
        users: UsersService,
        resolver: MembershipResolver,
        ignore_paths: Sequence[str],
    ):
        self.token_codec = token_codec
        self.users = users
        self.resolver = resolver
        self.ignore_paths = list(ignore_paths)

    def is_public_path(self, path: str) -> bool:
        return any(fnmatch(path, pattern) for pattern in self.ignore_paths)

    @staticmethod
    def extract_bearer_token(authorization: Optional[str]) -> str:
        """
        Token is the second whitespace-separated part of the header.

        Deployed clients send ``Bearer: <token>``; ``Bearer <token>`` works too.
        """
        if not authorization:
            raise UnauthorizedError("Authorization token required")

        parts = authorization.split()
        if len(parts) < 2 or parts[0].rstrip(":").lower() != "bearer":
            raise UnauthorizedError("Authorization token required")
        return parts[1]

    async def authenticate(self, authorization: Optional[str]) -> Principal:
        """
        Resolve the principal behind an Authorization header.

        Raises:
            UnauthorizedError: Missing or invalid token, unknown or archived
                principal, or no usable membership (401)
            AccessTokenExpiredError: Expired access token (403)
        """
        token = self.extract_bearer_token(authorization)
        payload = self.token_codec.decode_access_token(token)

        principal = await self.users.get_user_by_id(payload.user_id)
        if principal is None:
            logger.warning(f"Access token presented for unknown user {payload.user_id}")
            raise UnauthorizedError("Email not found.")
        if principal.is_archived:
            logger.warning(f"Access token presented for archived user {principal.id}")
            raise UnauthorizedError("Email not found.")

        if self.resolver.default_membership(principal) is None:
            logger.info(f"User {principal.id} has no usable membership")
            raise UnauthorizedError("Your account has no access to this platform.")

        return principal

    async def handle(self, request: Request) -> Optional[Principal]:
        """Authenticate ``request`` unless its path is allow-listed."""
        if self.is_public_path(request.url.path):
            return None

        principal = await self.authenticate(request.headers.get("Authorization"))
        request.state.user = principal
        return principal


def get_authentication_gate(
    token_codec: TokenCodec = Depends(get_token_codec),
    users: UsersService = Depends(get_users_service),
    resolver: MembershipResolver = Depends(get_membership_resolver),
) -> AuthenticationGate:
    return AuthenticationGate(token_codec, users, resolver, settings.auth_ignore_paths)


async def authenticate_request(
    request: Request, gate: AuthenticationGate = Depends(get_authentication_gate)
) -> None:
    """Application-wide dependency running the gate before every route."""
    await gate.handle(request)


async def get_current_user(request: Request) -> Principal:
    """
    Principal stored by the gate.

    Raises:
        UnauthorizedError: If the route is allow-listed and no principal was loaded
    """
    principal = getattr(request.state, "user", None)
    if principal is None:
        raise UnauthorizedError("Authorization token required")
    return principal


class PermissionChecker:
    """
    Dependency class for tenant-scoped authorization.

    Every listed permission is required inside the organization named by the
    ``{org}`` path parameter.
    """

    def __init__(
        self,
        permissions: List[str],
        allow_public_admins: bool = False,
        allow_pending_invitation: bool = False,
    ):
        self.permissions = [getattr(p, "value", p) for p in permissions]
        self.allow_public_admins = allow_public_admins
        self.allow_pending_invitation = allow_pending_invitation

    def __call__(
        self,
        request: Request,
        org: str,
        principal: Principal = Depends(get_current_user),
        engine: PermissionEngine = Depends(get_permission_engine),
    ) -> RequestAuth:
        auth = engine.authorize(
            principal,
            self.permissions,
            org,
            allow_public_admins=self.allow_public_admins,
            allow_pending_invitation=self.allow_pending_invitation,
        )
        request.state.auth = auth
        logger.debug(f"User {principal.id} authorized in '{org}' as {auth.role}")
        return auth
