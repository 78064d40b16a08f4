from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import hashlib

from appweaver.core.database import Base
from appweaver.core.types import GUID, generate_uuid


class AppFile(Base):
    """
    Virtual filesystem entry for a generated app.

    Tool workers create, patch, rename and delete these rows; the deployment
    pipeline reads them back.
    """
    __tablename__ = "app_files"

    __table_args__ = (
        Index('ix_app_files_app_id', 'app_id'),
        Index('ix_app_files_app_path', 'app_id', 'path', unique=True),  # Unique path per app
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    app_id = Column(GUID, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)

    path = Column(String(1000), nullable=False)  # e.g., "src/components/App.tsx"
    content = Column(Text, nullable=False, default="")
    size_bytes = Column(Integer, default=0)
    content_hash = Column(String(64), nullable=True)  # SHA-256

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    app = relationship("App", back_populates="files")

    def set_content(self, content: str) -> None:
        """Replace content and refresh size/hash"""
        self.content = content
        encoded = content.encode("utf-8")
        self.size_bytes = len(encoded)
        self.content_hash = hashlib.sha256(encoded).hexdigest()

    def __repr__(self):
        return f"<AppFile {self.path} ({self.size_bytes} bytes)>"
