"""
Chat Message Model - one conversational turn of an app's builder chat

``conversation_flow`` is the durable execution log for every tool batch the
turn dispatched. It is an ordered list; tool batches are appended as
``{"type": "tools", ...}`` entries next to other entry types and are never
truncated. Writers must go through the optimistic ``lock_version`` check
(see ``appweaver.modules.tool_execution.execution_log``).
"""

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Integer, Index, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from appweaver.core.database import Base
from appweaver.core.types import GUID, generate_uuid


class MessageRole(str, enum.Enum):
    """Message sender role"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, enum.Enum):
    """Processing state of an assistant turn"""
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    __table_args__ = (
        Index('ix_chat_messages_app_id', 'app_id'),
        Index('ix_chat_messages_created_at', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    app_id = Column(GUID, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)

    role = Column(String(50), nullable=False, default=MessageRole.ASSISTANT.value)
    content = Column(Text, nullable=False, default="")
    status = Column(String(50), nullable=True)

    conversation_flow = Column(JSON, nullable=False, default=list)
    lock_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    app = relationship("App", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage {self.role}: {(self.content or '')[:50]}...>"
