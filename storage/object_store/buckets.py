"""
Object store operations for document bytes.

Operations:
  - List every blob with its size and last-modified time
  - Upload (overwrite) a blob under a key
  - Delete a blob (deleting a missing key is not an error)
  - Generate read-only, time-bounded access URLs

Classes:
  - ObjectStore: Abstract interface
  - AzureBlobStore: Azure Blob Storage container
  - InMemoryObjectStore: Process-local store for development and tests

Every call goes to the backend; nothing is cached, and list() enumerates the
whole container without pagination.
"""

import hashlib
import hmac
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import quote

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)
from loguru import logger

from storage.errors import DeleteFailed, SignFailed, StoreUnavailable, WriteFailed

DEFAULT_URL_TTL = 3600


@dataclass(frozen=True)
class BlobMetadata:
    key: str
    size: int
    last_modified: datetime
    exists: bool = True


class ObjectStore(ABC):
    """Uniform interface over a blob container keyed by document title."""

    @abstractmethod
    def list(self) -> Dict[str, BlobMetadata]:
        """Raises StoreUnavailable."""
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Raises WriteFailed."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Raises DeleteFailed. A missing key counts as deleted."""
        raise NotImplementedError

    @abstractmethod
    def sign(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        """Raises SignFailed."""
        raise NotImplementedError

    def ensure_container(self) -> None:
        """Create the backing container if the backend needs one."""

    @property
    def name(self) -> str:
        return type(self).__name__


class AzureBlobStore(ObjectStore):
    """Documents stored as block blobs in one Azure Storage container."""

    def __init__(
        self,
        service_client: BlobServiceClient,
        container: str,
        account_name: Optional[str] = None,
        account_key: Optional[str] = None,
    ):
        self._service_client = service_client
        self._container = service_client.get_container_client(container)
        self.container = container
        self.account_name = account_name or service_client.account_name
        self.account_key = account_key or getattr(service_client.credential, "account_key", None)

    @classmethod
    def from_config(cls, config) -> "AzureBlobStore":
        if config.connection_string:
            service_client = BlobServiceClient.from_connection_string(config.connection_string)
        elif config.account_name and config.account_key:
            service_client = BlobServiceClient(
                account_url=f"https://{config.account_name}.blob.core.windows.net",
                credential={"account_name": config.account_name, "account_key": config.account_key},
            )
        else:
            raise ValueError(
                "AZURE_STORAGE_CONNECTION_STRING or "
                "AZURE_STORAGE_ACCOUNT_NAME/AZURE_STORAGE_ACCOUNT_KEY must be set"
            )

        logger.info("✓ Azure Blob Storage client initialized")
        return cls(
            service_client,
            config.container,
            account_name=config.account_name,
            account_key=config.account_key,
        )

    @property
    def name(self) -> str:
        return f"azure:{self.container}"

    def ensure_container(self) -> None:
        try:
            self._container.create_container()
            logger.info(f"✓ Created blob container '{self.container}'")
        except ResourceExistsError:
            logger.info(f"✓ Blob container '{self.container}' already exists")
        except AzureError as e:
            logger.warning(f"Could not verify blob container '{self.container}': {e}")

    def list(self) -> Dict[str, BlobMetadata]:
        try:
            blobs = {
                blob.name: BlobMetadata(
                    key=blob.name,
                    size=blob.size or 0,
                    last_modified=blob.last_modified,
                )
                for blob in self._container.list_blobs()
            }
        except AzureError as e:
            logger.error(f"[LIST] Error listing container '{self.container}': {e}")
            raise StoreUnavailable(f"Object store listing failed: {e}") from e

        logger.info(f"[LIST] Retrieved {len(blobs)} objects from container '{self.container}'")
        return blobs

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            self._container.upload_blob(
                name=key,
                data=data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as e:
            logger.error(f"[UPLOAD] Error uploading {key} to '{self.container}': {e}")
            raise WriteFailed("Failed to upload file to object store", key=key) from e

        logger.info(f"[UPLOAD] Uploaded {key} to container '{self.container}'")

    def delete(self, key: str) -> None:
        try:
            self._container.delete_blob(key)
        except ResourceNotFoundError:
            logger.info(f"[DELETE] {key} was already absent from '{self.container}'")
            return
        except AzureError as e:
            logger.error(f"[DELETE] Error deleting {key} from '{self.container}': {e}")
            raise DeleteFailed("Failed to delete file from object store", key=key) from e

        logger.info(f"[DELETE] Deleted {key} from container '{self.container}'")

    def sign(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        if not self.account_key:
            raise SignFailed("No account key available for SAS generation", key=key)

        try:
            sas_token = generate_blob_sas(
                account_name=self.account_name,
                container_name=self.container,
                blob_name=key,
                account_key=self.account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            )
            blob_url = self._container.get_blob_client(key).url
        except (AzureError, ValueError, TypeError) as e:
            logger.error(f"Error generating access URL for {key}: {e}")
            raise SignFailed(f"Failed to sign URL for {key}", key=key) from e

        return f"{blob_url}?{sas_token}"


class InMemoryObjectStore(ObjectStore):
    """
    Process-local object store (development/testing).

    WARNING: This is single-instance only and data is lost on restart.
    Signed URLs carry an expiry and an HMAC over key + expiry.
    """

    def __init__(
        self,
        container: str = "documents",
        base_url: str = "http://localhost:5001/blobs",
        signing_secret: str = "local-dev-signing-secret",
    ):
        self.container = container
        self.base_url = base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")
        self._blobs: Dict[str, tuple] = {}  # key -> (data, content_type, last_modified)
        self.lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"memory:{self.container}"

    def list(self) -> Dict[str, BlobMetadata]:
        with self.lock:
            return {
                key: BlobMetadata(key=key, size=len(data), last_modified=modified)
                for key, (data, _, modified) in self._blobs.items()
            }

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        with self.lock:
            self._blobs[key] = (bytes(data), content_type, datetime.now(timezone.utc))

    def delete(self, key: str) -> None:
        with self.lock:
            self._blobs.pop(key, None)

    def get(self, key: str) -> Optional[bytes]:
        with self.lock:
            entry = self._blobs.get(key)
        return entry[0] if entry else None

    def sign(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        expires = int((datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).timestamp())
        signature = self._signature(key, expires)
        return f"{self.base_url}/{self.container}/{quote(key)}?se={expires}&sig={signature}"

    def verify(self, key: str, expires: int, signature: str) -> bool:
        """True when ``signature`` matches and ``expires`` is still in the future."""
        if expires < datetime.now(timezone.utc).timestamp():
            return False
        return hmac.compare_digest(self._signature(key, expires), signature)

    def _signature(self, key: str, expires: int) -> str:
        message = f"{self.container}/{key}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


def build_object_store(config) -> ObjectStore:
    """Create the object store selected by ``BlobStoreConfig.backend``."""
    if config.backend == "memory":
        logger.warning("⚠️  Using in-memory object store (development mode)")
        return InMemoryObjectStore(
            container=config.container,
            signing_secret=config.signing_secret,
        )
    if config.backend == "azure":
        return AzureBlobStore.from_config(config)
    raise ValueError(f"Unknown BLOB_BACKEND: {config.backend}")
