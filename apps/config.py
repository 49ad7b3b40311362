"""
Environment configuration for the document portal.

Values are read once from the process environment (a local .env file is
loaded first when present). Each component gets its own small config class so
tests can build one directly without touching the environment.
"""

import os
from typing import List, Optional

import dotenv
from loguru import logger

dotenv.load_dotenv()

_UNSET = object()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_optional_float(name: str, default: str) -> Optional[float]:
    raw = os.getenv(name, default).strip()
    if raw == "" or raw.lower() == "none":
        return None
    return float(raw)


class DatabaseConfig:
    """Configuration for the relational store and its connection pool"""

    def __init__(
        self,
        url: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        auth_mode: Optional[str] = None,
        pool_size: Optional[int] = None,
        pool_timeout=_UNSET,
        wait_for_connections: Optional[bool] = None,
        idle_timeout: Optional[float] = None,
        pool_recycle: Optional[int] = None,
        drain_timeout: Optional[float] = None,
        liveness_interval: Optional[float] = None,
        admin_url: Optional[str] = None,
        reset_users: Optional[List[str]] = None,
        echo: Optional[bool] = None,
    ):
        self.url = url or os.getenv("DATABASE_URL", "sqlite:///./documents.db")
        self.user = user if user is not None else os.getenv("DB_USER")
        self.password = password if password is not None else os.getenv("DB_PASSWORD")

        # "password" uses DB_PASSWORD as-is, "token" mints a fresh token per connection
        self.auth_mode = auth_mode or os.getenv("DB_AUTH_MODE", "password")
        self.token_endpoint = os.getenv(
            "DB_TOKEN_ENDPOINT",
            "http://169.254.169.254/metadata/identity/oauth2/token",
        )
        self.token_resource = os.getenv(
            "DB_TOKEN_RESOURCE", "https://ossrdbms-aad.database.windows.net"
        )

        # Connection pooling
        self.pool_size = pool_size if pool_size is not None else int(os.getenv("DB_POOL_SIZE", "5"))
        if self.pool_size < 1:
            raise ValueError(f"DB_POOL_SIZE must be at least 1, got {self.pool_size}")
        # None means wait forever
        self.pool_timeout = (
            _env_optional_float("DB_POOL_TIMEOUT", "10")
            if pool_timeout is _UNSET
            else pool_timeout
        )
        self.wait_for_connections = (
            _env_bool("DB_POOL_WAIT_FOR_CONNECTIONS", "true")
            if wait_for_connections is None
            else wait_for_connections
        )
        self.idle_timeout = (
            idle_timeout if idle_timeout is not None
            else float(os.getenv("DB_POOL_IDLE_TIMEOUT", "30"))
        )
        self.pool_recycle = (
            pool_recycle if pool_recycle is not None
            else int(os.getenv("DB_POOL_RECYCLE", "1500"))
        )
        # 0 means close without waiting for in-flight connections
        self.drain_timeout = (
            drain_timeout if drain_timeout is not None
            else float(os.getenv("DB_POOL_DRAIN_TIMEOUT", "30"))
        )
        # 0 disables the background liveness probe
        self.liveness_interval = (
            liveness_interval if liveness_interval is not None
            else float(os.getenv("DB_LIVENESS_INTERVAL", "60"))
        )

        # Optional bootstrap step: kill sessions leaked by a previous crash
        self.admin_url = admin_url if admin_url is not None else os.getenv("DB_ADMIN_URL")
        if reset_users is None:
            raw_users = os.getenv("DB_RESET_USERS", "")
            reset_users = [u.strip() for u in raw_users.split(",") if u.strip()]
            if not reset_users and self.user:
                reset_users = [self.user]
        self.reset_users = reset_users

        # Echo SQL for debugging (set False in production)
        self.echo = _env_bool("DB_ECHO", "false") if echo is None else echo

        logger.info(
            f"Database config: pool_size={self.pool_size}, "
            f"timeout={self.pool_timeout}, wait={self.wait_for_connections}, "
            f"auth_mode={self.auth_mode}"
        )


class BlobStoreConfig:
    """Configuration for the object store holding the document bytes"""

    def __init__(self, backend: Optional[str] = None, container: Optional[str] = None):
        self.backend = backend or os.getenv("BLOB_BACKEND", "azure")
        self.connection_string = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
        self.account_name = os.getenv("AZURE_STORAGE_ACCOUNT_NAME")
        self.account_key = os.getenv("AZURE_STORAGE_ACCOUNT_KEY")
        self.container = container or os.getenv("AZURE_BLOB_CONTAINER", "documents")
        self.access_url_ttl = int(os.getenv("ACCESS_URL_TTL", "3600"))
        self.signing_secret = os.getenv("BLOB_SIGNING_SECRET", "local-dev-signing-secret")


class AuthConfig:
    """Configuration for request authentication and the identity provider"""

    def __init__(self, mode: Optional[str] = None):
        environment = os.getenv("ENVIRONMENT", "development")
        default_mode = "enforced" if environment == "production" else "bypassed"
        self.mode = (mode or os.getenv("AUTH_MODE", default_mode)).lower()
        self.issuer = os.getenv("AUTH_ISSUER")
        self.jwks_url = os.getenv("AUTH_JWKS_URL")
        self.audience = os.getenv("AUTH_AUDIENCE")
        self.admin_group = os.getenv("AUTH_ADMIN_GROUP", "admin")
        self.idp_admin_url = os.getenv("IDP_ADMIN_URL")
        self.idp_admin_token = os.getenv("IDP_ADMIN_TOKEN")

        if self.mode == "bypassed":
            logger.warning(
                "⚠️  AUTH_MODE=bypassed: upload and delete accept unauthenticated requests"
            )


class PortalConfig:
    """Top-level configuration bundle handed to the app factory"""

    def __init__(
        self,
        database: Optional[DatabaseConfig] = None,
        blob_store: Optional[BlobStoreConfig] = None,
        auth: Optional[AuthConfig] = None,
    ):
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.database = database or DatabaseConfig()
        self.blob_store = blob_store or BlobStoreConfig()
        self.auth = auth or AuthConfig()
        self.frontend_origins = [
            origin.strip()
            for origin in os.getenv(
                "FRONTEND_ORIGINS", "http://localhost:3000,http://localhost:5173"
            ).split(",")
            if origin.strip()
        ]
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
