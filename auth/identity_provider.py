"""
Account creation, delegated to the external identity provider.

The portal never stores passwords itself in production; signup forwards the
request to the provider's admin API. An in-memory provider stands in during
local development.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import bcrypt
import httpx
from loguru import logger

from storage.errors import PortalError


class IdentityProviderError(PortalError):
    pass


class IdentityProvider(ABC):
    @abstractmethod
    def create_user(self, username: str, password: str, email: str) -> None:
        """Create a confirmed account with a permanent password."""
        raise NotImplementedError


class HttpIdentityProvider(IdentityProvider):
    """
    Talks to the provider's admin REST API.

    ``POST {admin_url}/users`` with the admin bearer token creates a user with
    a verified email and a permanent password.
    """

    def __init__(
        self,
        admin_url: str,
        admin_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.admin_url = admin_url.rstrip("/")
        self.admin_token = admin_token
        self.timeout = timeout
        self._transport = transport

    def create_user(self, username: str, password: str, email: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.admin_token:
            headers["Authorization"] = f"Bearer {self.admin_token}"

        payload = {
            "username": username,
            "password": password,
            "permanentPassword": True,
            "attributes": {"email": email, "email_verified": "true"},
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.admin_url}/users", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("error") or response.json().get("message")
            except ValueError:
                detail = None
            message = detail or f"Identity provider returned {response.status_code}"
            logger.error(f"Error creating user {username}: {message}")
            raise IdentityProviderError(message)

        logger.info(f"Created user {username} in identity provider")


class InMemoryIdentityProvider(IdentityProvider):
    """
    Local stand-in for development and tests.

    WARNING: single-instance only and data is lost on restart.
    """

    def __init__(self):
        self.users: Dict[str, Dict[str, str]] = {}
        self.lock = threading.Lock()

    def create_user(self, username: str, password: str, email: str) -> None:
        password_hash = bcrypt.hashpw(
            password.encode("utf-8")[:72], bcrypt.gensalt(rounds=12)
        ).decode("utf-8")

        with self.lock:
            if username in self.users:
                raise IdentityProviderError(f"User {username} already exists")
            self.users[username] = {"email": email, "password_hash": password_hash}

        logger.info(f"Created user {username} (in-memory identity provider)")

    def verify_password(self, username: str, password: str) -> bool:
        with self.lock:
            user = self.users.get(username)
        if not user:
            return False
        return bcrypt.checkpw(password.encode("utf-8")[:72], user["password_hash"].encode("utf-8"))


def build_identity_provider(config) -> IdentityProvider:
    if config.idp_admin_url:
        return HttpIdentityProvider(config.idp_admin_url, admin_token=config.idp_admin_token)
    logger.warning("⚠️  IDP_ADMIN_URL not set, using in-memory identity provider")
    return InMemoryIdentityProvider()
