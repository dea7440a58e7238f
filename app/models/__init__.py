"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from app.models.document import Document

All models are imported here so ``create_schema`` sees every table
on ``Base.metadata``.
"""

from app.models.agent import Agent
from app.models.document import Document, DocumentChunk, DocumentStatus
from app.models.knowledge import KnowledgeBase, agent_knowledge_bases
from app.models.message import Citation, Message

__all__ = [
    "Agent",
    "Citation",
    "Document",
    "DocumentChunk",
    "DocumentStatus",
    "KnowledgeBase",
    "Message",
    "agent_knowledge_bases",
]
