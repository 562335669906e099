"""
Conversation DAO

Append-only store of conversation turns. History is returned in insertion
order; a chat round (user question + assistant answer) is written in a
single transaction.
"""

import logging
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saju_rag.database.connection import get_session
from saju_rag.database.entities import ConversationTurn
from saju_rag.errors import RetrievalError

logger = logging.getLogger(__name__)

ROLES = {"user", "assistant", "system"}


class ConversationStore:
    """Relational store of per-conversation message turns."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_history(self, conversation_id: str) -> List[Dict[str, str]]:
        """
        Fetch all turns of a conversation, oldest first.

        An unknown conversation id yields an empty list.
        """
        query = (
            select(ConversationTurn.role, ConversationTurn.content)
            .where(ConversationTurn.conversation_id == conversation_id)
            .order_by(ConversationTurn.id.asc())
        )
        try:
            async with get_session(self._session_maker, read_only=True) as session:
                rows = (await session.execute(query)).all()
        except SQLAlchemyError as e:
            logger.error(f"Error in ConversationStore.get_history. Error: {e}")
            raise RetrievalError("Failed to load conversation history") from e
        return [{"role": role, "content": content} for role, content in rows]

    async def append_turn(self, conversation_id: str, user_id: int, role: str, content: str) -> None:
        """Append a single turn."""
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role}")
        async with get_session(self._session_maker) as session:
            session.add(
                ConversationTurn(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role=role,
                    content=content,
                )
            )

    async def append_round(
        self,
        conversation_id: str,
        user_id: int,
        user_message: str,
        assistant_message: str,
    ) -> None:
        """Append the user question and the assistant answer atomically."""
        async with get_session(self._session_maker) as session:
            session.add(
                ConversationTurn(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role="user",
                    content=user_message,
                )
            )
            # Flush so the user turn takes the lower id
            await session.flush()
            session.add(
                ConversationTurn(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role="assistant",
                    content=assistant_message,
                )
            )
