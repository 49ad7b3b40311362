"""
Data access layer for document records.

The repository pattern isolates SQL from the document service. Every method
takes the ORM session of the caller's pooled connection, and SQLAlchemy errors
are converted to RecordStoreError before they leave this module.

Repository methods:
- list_all, insert, find_title_by_id, delete_by_id, count
"""

from dataclasses import dataclass
from typing import List
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.errors import NotFound, RecordStoreError
from storage.relational.models import Document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentRecord:
    """Detached, immutable copy of one documents row."""

    id: int
    title: str


class DocumentRepository:
    """
    Repository for Document database operations.

    Encapsulates all SQL queries related to document records.
    """

    @staticmethod
    def list_all(db: Session) -> List[DocumentRecord]:
        """
        All records in insertion order.

        Args:
            db: Database session

        Returns:
            List of DocumentRecord ordered by id
        """
        try:
            rows = db.execute(select(Document.id, Document.title).order_by(Document.id)).all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing documents: {e}")
            raise RecordStoreError(f"Failed to list documents: {e}") from e

        logger.info(f"Retrieved {len(rows)} documents from database")
        return [DocumentRecord(id=row.id, title=row.title) for row in rows]

    @staticmethod
    def insert(db: Session, title: str) -> DocumentRecord:
        """
        Create a record for a freshly stored blob.

        Args:
            db: Database session
            title: Document title, equal to the object store key

        Returns:
            The created DocumentRecord with its generated id
        """
        document = Document(title=title)
        try:
            db.add(document)
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error adding document {title!r} to database: {e}")
            raise RecordStoreError("Failed to add document to database", key=title) from e

        logger.info(f"Added document {title!r} to database with ID {document.id}")
        return DocumentRecord(id=document.id, title=document.title)

    @staticmethod
    def find_title_by_id(db: Session, document_id: int) -> str:
        """
        Raises:
            NotFound: no record with this id
        """
        try:
            title = db.execute(
                select(Document.title).where(Document.id == document_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error looking up document {document_id}: {e}")
            raise RecordStoreError(f"Failed to look up document {document_id}") from e

        if title is None:
            raise NotFound(f"Document {document_id} not found")
        return title

    @staticmethod
    def delete_by_id(db: Session, document_id: int) -> None:
        """
        Raises:
            NotFound: no record with this id
        """
        try:
            document = db.get(Document, document_id)
            if document is None:
                raise NotFound(f"Document {document_id} not found")
            db.delete(document)
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error deleting document {document_id} from database: {e}")
            raise RecordStoreError("Failed to delete document from database") from e

        logger.info(f"Deleted document with ID {document_id} from database")

    @staticmethod
    def count(db: Session) -> int:
        try:
            return db.execute(select(func.count()).select_from(Document)).scalar_one()
        except SQLAlchemyError as e:
            raise RecordStoreError(f"Failed to count documents: {e}") from e
