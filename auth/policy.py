"""
Request authentication policy.

Identity tokens are issued by an external identity provider; this module only
verifies them. The policy is chosen once from configuration:

- EnforcedAuthPolicy: bearer JWT verified against the issuer's JWKS
- BypassedAuthPolicy: every request is accepted (non-production only)

Routes depend on ``require_identity`` and never look at the environment.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import jwt
from fastapi import Header, Request
from loguru import logger

from storage.errors import PortalError


class Unauthenticated(PortalError):
    status_code = 401


@dataclass
class Identity:
    subject: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def username(self) -> str:
        return (
            self.claims.get("username")
            or self.claims.get("cognito:username")
            or self.claims.get("preferred_username")
            or self.subject
        )

    @property
    def groups(self) -> List[str]:
        groups = self.claims.get("groups") or self.claims.get("cognito:groups") or []
        if isinstance(groups, str):
            return [groups]
        return list(groups)


class AuthPolicy(ABC):
    enforced: bool = True

    @abstractmethod
    def authenticate(self, authorization: Optional[str]) -> Identity:
        """Raises Unauthenticated."""
        raise NotImplementedError

    @abstractmethod
    def is_admin(self, identity: Identity, username: str) -> bool:
        raise NotImplementedError


class BypassedAuthPolicy(AuthPolicy):
    """Development mode: no token required, everyone is an admin."""

    enforced = False

    def authenticate(self, authorization: Optional[str]) -> Identity:
        return Identity(subject="anonymous")

    def is_admin(self, identity: Identity, username: str) -> bool:
        return True


class JwksTokenVerifier:
    """Verifies RS256 tokens against the signing keys published by the issuer."""

    def __init__(
        self,
        jwks_url: str,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        algorithms: Sequence[str] = ("RS256",),
        jwks_client: Optional[jwt.PyJWKClient] = None,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.algorithms = list(algorithms)
        self._jwks_client = jwks_client or jwt.PyJWKClient(jwks_url, cache_keys=True)

    def verify(self, token: str) -> Dict[str, Any]:
        signing_key = self._jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={"verify_aud": self.audience is not None},
        )


class EnforcedAuthPolicy(AuthPolicy):
    """Production mode: a valid bearer token is required."""

    enforced = True

    def __init__(self, verifier: JwksTokenVerifier, admin_group: str = "admin"):
        self.verifier = verifier
        self.admin_group = admin_group

    def authenticate(self, authorization: Optional[str]) -> Identity:
        if not authorization or not authorization.startswith("Bearer "):
            raise Unauthenticated("Missing authorization token")

        token = authorization[len("Bearer "):].strip()
        try:
            claims = self.verifier.verify(token)
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            raise Unauthenticated("Token expired")
        except jwt.PyJWTError as e:
            logger.warning(f"Invalid token: {e}")
            raise Unauthenticated("Invalid or expired token")

        subject = claims.get("sub")
        if not subject:
            raise Unauthenticated("Invalid token: missing sub")
        return Identity(subject=subject, claims=claims)

    def is_admin(self, identity: Identity, username: str) -> bool:
        # Group claims are only known for the caller
        if username != identity.username:
            return False
        return self.admin_group in identity.groups


def build_auth_policy(config) -> AuthPolicy:
    """Select the policy from ``AuthConfig.mode``."""
    if config.mode == "bypassed":
        return BypassedAuthPolicy()

    if config.mode == "enforced":
        jwks_url = config.jwks_url
        if not jwks_url and config.issuer:
            jwks_url = f"{config.issuer.rstrip('/')}/.well-known/jwks.json"
        if not jwks_url:
            raise ValueError("AUTH_MODE=enforced requires AUTH_JWKS_URL or AUTH_ISSUER")

        logger.info(f"Auth enforced (issuer={config.issuer}, jwks={jwks_url})")
        return EnforcedAuthPolicy(
            JwksTokenVerifier(jwks_url, issuer=config.issuer, audience=config.audience),
            admin_group=config.admin_group,
        )

    raise ValueError(f"Unknown AUTH_MODE: {config.mode}")


# ==================== DEPENDENCY FUNCTIONS ====================

async def require_identity(request: Request, authorization: str = Header(None)) -> Identity:
    """
    Dependency: authenticate the request with the app's configured policy.
    """
    policy: AuthPolicy = request.app.state.auth_policy
    # JWKS lookups can hit the network
    return await asyncio.to_thread(policy.authenticate, authorization)
