"""
Document DAO

Data-access layer for the ``Document`` entity:
- insert with exact-text dedup
- batch fetch of text by id
- delete by id
- paginated listing with optional substring search

Every method opens and releases its own session. Database failures are
logged and surfaced as RetrievalError so callers never see driver types.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saju_rag.database.connection import get_session
from saju_rag.database.entities import Document
from saju_rag.errors import RetrievalError

logger = logging.getLogger(__name__)


@dataclass
class DocumentPage:
    """One page of documents plus pagination metadata."""
    data: List[dict] = field(default_factory=list)
    total_items: int = 0
    total_pages: int = 0
    current_page: int = 1
    page_size: int = 10

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "pagination": {
                "totalItems": self.total_items,
                "totalPages": self.total_pages,
                "currentPage": self.current_page,
                "pageSize": self.page_size,
            },
        }


class DocumentStore:
    """Relational store of knowledge documents keyed by id."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def insert_if_absent(self, text: str) -> Optional[int]:
        """
        Insert ``text`` unless an identical document exists.

        Returns:
            The new document id, or None when the text is already stored.
        """
        try:
            async with get_session(self._session_maker) as session:
                existing = await session.scalar(select(Document.id).where(Document.text == text))
                if existing is not None:
                    return None
                document = Document(text=text)
                session.add(document)
                await session.flush()
                return document.id
        except IntegrityError:
            # Concurrent insert of the same text won the unique constraint
            logger.info("Duplicate document rejected by unique constraint")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Error in DocumentStore.insert_if_absent. Error: {e}")
            raise RetrievalError("Failed to save document") from e

    async def get_by_ids(self, ids: Sequence[str]) -> List[str]:
        """
        Fetch document texts for the given ids.

        Order of the result is not tied to the order of ``ids``.
        """
        int_ids = [int(i) for i in ids if str(i).isdigit()]
        if not int_ids:
            return []
        try:
            async with get_session(self._session_maker, read_only=True) as session:
                rows = await session.scalars(select(Document.text).where(Document.id.in_(int_ids)))
                return list(rows)
        except SQLAlchemyError as e:
            logger.error(f"Error in DocumentStore.get_by_ids. Error: {e}")
            raise RetrievalError("Failed to fetch documents") from e

    async def delete(self, document_id: int) -> bool:
        """Delete a document. Returns False when no such id exists."""
        try:
            async with get_session(self._session_maker) as session:
                result = await session.execute(delete(Document).where(Document.id == document_id))
                return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error in DocumentStore.delete. Error: {e}")
            raise RetrievalError("Failed to delete document") from e

    async def list(self, page: int, page_size: int, search: Optional[str] = None) -> DocumentPage:
        """
        List documents newest first.

        Args:
            page: 1-based page number
            page_size: Rows per page (required, no default)
            search: Optional substring matched against ``text``

        Returns:
            DocumentPage with rows and pagination metadata
        """
        data_query = select(Document)
        count_query = select(func.count()).select_from(Document)
        if search:
            condition = Document.text.like(f"%{search}%")
            data_query = data_query.where(condition)
            count_query = count_query.where(condition)

        offset = (page - 1) * page_size
        data_query = data_query.order_by(Document.id.desc()).limit(page_size).offset(offset)

        try:
            async with get_session(self._session_maker, read_only=True) as session:
                documents = (await session.scalars(data_query)).all()
                total_items = await session.scalar(count_query) or 0
        except SQLAlchemyError as e:
            logger.error(f"Error in DocumentStore.list. Error: {e}")
            raise RetrievalError("Failed to retrieve paginated documents") from e

        return DocumentPage(
            data=[d.to_dict() for d in documents],
            total_items=total_items,
            total_pages=math.ceil(total_items / page_size) if page_size else 0,
            current_page=page,
            page_size=page_size,
        )
