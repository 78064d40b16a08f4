from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from appweaver.core.database import Base
from appweaver.core.types import GUID, generate_uuid


class AppStatus(str, enum.Enum):
    """Lifecycle of a generated app"""
    DRAFT = "draft"
    GENERATING = "generating"
    DEPLOYING = "deploying"
    READY = "ready"
    FAILED = "failed"


class App(Base):
    """A generated web app; owns chat messages, files and deployments"""
    __tablename__ = "apps"

    id = Column(GUID, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    # String, not SQLEnum, to avoid enum type creation on PostgreSQL
    status = Column(String(50), nullable=False, default=AppStatus.DRAFT.value)
    preview_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship("ChatMessage", back_populates="app", cascade="all, delete-orphan")
    files = relationship("AppFile", back_populates="app", cascade="all, delete-orphan")
    deployments = relationship("AppDeployment", back_populates="app", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<App {self.name} ({self.status})>"
