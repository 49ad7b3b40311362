"""
Database model for document records.

One table, ``documents``: an auto-increment id and the document title. The
title doubles as the object store key for the document's bytes.
"""

from sqlalchemy import Column, Integer, String, func, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import declarative_base
from loguru import logger

Base = declarative_base()


class Document(Base):
    """
    A document known to the portal.

    Attributes:
        id: Auto-increment primary key, stable for the record's lifetime
        title: Original file name; also the object store key
    """

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)

    def __repr__(self):
        return f"<Document(id={self.id}, title={self.title!r})>"


def bootstrap_schema(connection: Connection) -> bool:
    """
    Create the documents table if it does not exist yet (IDEMPOTENT).

    Returns:
        True when the table was created, False when it already existed
    """
    inspector = inspect(connection)

    if Document.__tablename__ not in inspector.get_table_names():
        logger.info("Documents table does not exist, creating it...")
        Document.__table__.create(connection, checkfirst=True)
        connection.commit()
        logger.info("✓ Documents table created")
        return True

    count = connection.execute(select(func.count()).select_from(Document.__table__)).scalar()
    logger.info(f"✓ Documents table exists ({count} documents)")
    return False
