"""
Relational persistence: engine/session helpers, entities and DAOs.
"""

from saju_rag.database.connection import Base, create_all_tables, create_session_maker, get_session
from saju_rag.database.conversation_store import ConversationStore
from saju_rag.database.document_store import DocumentPage, DocumentStore
from saju_rag.database.entities import ConversationTurn, Document

__all__ = [
    "Base",
    "create_all_tables",
    "create_session_maker",
    "get_session",
    "ConversationStore",
    "DocumentPage",
    "DocumentStore",
    "ConversationTurn",
    "Document",
]
