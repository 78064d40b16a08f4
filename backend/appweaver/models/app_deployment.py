from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from appweaver.core.database import Base
from appweaver.core.types import GUID, generate_uuid


class DeploymentStatus(str, enum.Enum):
    """Status of a deployment request"""
    QUEUED = "queued"           # Recorded, waiting for the external deployer
    DEPLOYING = "deploying"     # Request in flight
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class AppDeployment(Base):
    """One row per deployment triggered by a fully successful tool batch"""
    __tablename__ = "app_deployments"

    __table_args__ = (
        Index('ix_app_deployments_app_id', 'app_id'),
        Index('ix_app_deployments_execution_id', 'execution_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    app_id = Column(GUID, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    execution_id = Column(String(100), nullable=True)

    environment = Column(String(50), nullable=False, default="production")
    status = Column(String(50), nullable=False, default=DeploymentStatus.QUEUED.value)
    error = Column(Text, nullable=True)
    external_id = Column(String(255), nullable=True)  # ID returned by the deployment service

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    app = relationship("App", back_populates="deployments")

    def __repr__(self):
        return f"<AppDeployment {self.app_id} {self.status}>"
