"""
Business logic for documents: read-time reconciliation and ordered writes.

The service layer sits between the routes and the two stores. It handles:
- Joining relational records with the object store listing by title
- Generating fresh access URLs on every read
- Degrading per item (or per request) when the object store misbehaves
- Ordering upload/delete writes so a failure leaves a recoverable state

Known limitations:
- The title is the only link between a record and its blob. Renaming either
  side orphans the other.
- If the record insert fails after the blob upload succeeded, the blob stays
  behind as an orphan. It is logged, not cleaned up.
- Concurrent uploads of the same title race: last write wins at the blob
  layer and both records are kept.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from loguru import logger

from storage.errors import SignFailed, StoreUnavailable
from storage.object_store.buckets import DEFAULT_URL_TTL, BlobMetadata, ObjectStore
from storage.relational.pool import ConnectionPoolManager
from storage.relational.repository import DocumentRecord, DocumentRepository


class DocumentStatus(str, Enum):
    AVAILABLE = "available"
    FILE_NOT_FOUND = "file_not_found"
    LINK_UNAVAILABLE = "link_unavailable"
    METADATA_UNAVAILABLE = "metadata_unavailable"


@dataclass
class DocumentView:
    """
    One record joined with its blob metadata. Never persisted.

    Derived fields (last_modified, size, access_url) are None when the blob
    was not found, and access_url alone is None when signing failed.
    """

    id: int
    title: str
    status: DocumentStatus
    last_modified: Optional[datetime] = None
    size: Optional[int] = None
    access_url: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status == DocumentStatus.METADATA_UNAVAILABLE


@dataclass
class UploadResult:
    record: DocumentRecord
    content_type: Optional[str]
    size: int
    access_url: Optional[str]


@dataclass
class DeleteResult:
    id: int
    title: str


class DocumentService:
    """
    Reconciliation engine over the record store and the object store.

    Blocking gateway calls run in worker threads so the relational query and
    the object store listing proceed concurrently.
    """

    def __init__(
        self,
        pool: ConnectionPoolManager,
        store: ObjectStore,
        url_ttl: int = DEFAULT_URL_TTL,
    ):
        self.pool = pool
        self.store = store
        self.url_ttl = url_ttl

    # ==================== READ PATH ====================

    async def list_documents(self) -> List[DocumentView]:
        """
        Every record, joined with blob metadata and a fresh access URL.

        A failing object store degrades the response instead of failing it.
        A failing record store fails the request.
        """
        records, blobs = await asyncio.gather(
            asyncio.to_thread(self._load_records),
            asyncio.to_thread(self.store.list),
            return_exceptions=True,
        )

        if isinstance(records, BaseException):
            raise records

        if isinstance(blobs, StoreUnavailable):
            logger.warning(f"[LIST] Object store unavailable, returning records only: {blobs}")
            blobs = None
        elif isinstance(blobs, BaseException):
            logger.opt(exception=blobs).error("[LIST] Unexpected object store failure")
            blobs = None

        views = self.reconcile(records, blobs)
        logger.info(f"[LIST] Sending {len(views)} documents")
        return views

    def _load_records(self) -> List[DocumentRecord]:
        with self.pool.session() as db:
            return DocumentRepository.list_all(db)

    def reconcile(
        self,
        records: List[DocumentRecord],
        blobs: Optional[Dict[str, BlobMetadata]],
    ) -> List[DocumentView]:
        """
        Join records to blobs by exact title.

        Args:
            records: Records in insertion order
            blobs: Object store listing, or None when the listing failed

        Returns:
            Exactly one view per record, in the same order
        """
        if blobs is None:
            return [
                DocumentView(id=r.id, title=r.title, status=DocumentStatus.METADATA_UNAVAILABLE)
                for r in records
            ]

        views = []
        for record in records:
            blob = blobs.get(record.title)
            if blob is None:
                logger.debug(f"[LIST] {record.title} not found in object store")
                views.append(
                    DocumentView(id=record.id, title=record.title, status=DocumentStatus.FILE_NOT_FOUND)
                )
                continue

            access_url = self._try_sign(record.title)
            views.append(
                DocumentView(
                    id=record.id,
                    title=record.title,
                    status=DocumentStatus.AVAILABLE if access_url else DocumentStatus.LINK_UNAVAILABLE,
                    last_modified=blob.last_modified,
                    size=blob.size,
                    access_url=access_url,
                )
            )
        return views

    def _try_sign(self, key: str) -> Optional[str]:
        try:
            return self.store.sign(key, self.url_ttl)
        except SignFailed as e:
            logger.error(f"Error generating access URL for {key}: {e}")
            return None

    # ==================== WRITE PATHS ====================

    async def upload(
        self,
        title: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Store the blob, then insert the record.

        Raises:
            WriteFailed: blob upload failed; no record was created
            RecordStoreError / PoolExhausted: record insert failed; the blob is an orphan
        """
        await asyncio.to_thread(self.store.put, title, data, content_type)

        try:
            record = await asyncio.to_thread(self._insert_record, title)
        except Exception as e:
            logger.error(
                f"[UPLOAD] {title!r} is in the object store but has no record "
                f"(orphan blob, manual cleanup required): {e}"
            )
            raise

        return UploadResult(
            record=record,
            content_type=content_type,
            size=len(data),
            access_url=self._try_sign(title),
        )

    def _insert_record(self, title: str) -> DocumentRecord:
        with self.pool.session() as db:
            return DocumentRepository.insert(db, title)

    async def delete(self, document_id: int) -> DeleteResult:
        """
        Look up the title, delete the blob, then delete the record.

        Raises:
            NotFound: unknown id
            DeleteFailed: blob delete failed; the record is left intact
        """
        return await asyncio.to_thread(self._delete, document_id)

    def _delete(self, document_id: int) -> DeleteResult:
        with self.pool.session() as db:
            title = DocumentRepository.find_title_by_id(db, document_id)
            self.store.delete(title)
            DocumentRepository.delete_by_id(db, document_id)

        logger.info(f"[DELETE] Document {document_id} ({title}) deleted")
        return DeleteResult(id=document_id, title=title)
