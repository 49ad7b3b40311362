"""
Credential providers for physical database connections.

The pool manager calls ``get_secret()`` right before it opens each new
physical connection, so a provider that mints short-lived tokens hands every
connection a fresh one. Nothing here caches a secret across connections.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import httpx
from loguru import logger


class CredentialProvider(ABC):
    """Supplies the secret used to authenticate one physical connection."""

    @abstractmethod
    def get_secret(self) -> str:
        raise NotImplementedError

    @property
    def description(self) -> str:
        return type(self).__name__


class StaticCredentialProvider(CredentialProvider):
    """Plain password from configuration."""

    def __init__(self, password: str):
        self._password = password

    def get_secret(self) -> str:
        return self._password

    @property
    def description(self) -> str:
        return "password authentication"


class TokenCredentialProvider(CredentialProvider):
    """
    Wraps any callable that mints a short-lived authentication token.

    The callable is invoked once per physical connection.
    """

    def __init__(self, mint_token: Callable[[], str]):
        self._mint_token = mint_token

    def get_secret(self) -> str:
        try:
            token = self._mint_token()
        except Exception as e:
            logger.error(f"[CREDENTIALS] Token minting failed: {e}")
            raise
        logger.debug("[CREDENTIALS] Minted new connection token")
        return token

    @property
    def description(self) -> str:
        return "token authentication"


class ManagedIdentityTokenProvider(TokenCredentialProvider):
    """
    Fetches database access tokens from a managed-identity token endpoint.

    The endpoint is expected to answer the instance metadata protocol:
    ``GET <endpoint>?api-version=...&resource=<resource>`` with a
    ``Metadata: true`` header, returning JSON with an ``access_token`` field.
    """

    API_VERSION = "2018-02-01"

    def __init__(
        self,
        endpoint: str,
        resource: str,
        client_id: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.resource = resource
        self.client_id = client_id
        self.timeout = timeout
        self._transport = transport
        super().__init__(self._fetch_token)

    def _fetch_token(self) -> str:
        params = {"api-version": self.API_VERSION, "resource": self.resource}
        if self.client_id:
            params["client_id"] = self.client_id

        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            response = client.get(self.endpoint, params=params, headers={"Metadata": "true"})
            response.raise_for_status()
            payload = response.json()

        token = payload.get("access_token")
        if not token:
            raise ValueError("Token endpoint response is missing access_token")
        return token


def credential_provider_from_config(config) -> Optional[CredentialProvider]:
    """Pick the provider matching ``DatabaseConfig.auth_mode``."""
    if config.auth_mode == "token":
        return ManagedIdentityTokenProvider(
            endpoint=config.token_endpoint,
            resource=config.token_resource,
        )
    if config.password:
        return StaticCredentialProvider(config.password)
    # Credentials embedded in the URL (or none at all, e.g. SQLite)
    return None
