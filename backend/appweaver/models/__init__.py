# Re-export all models for convenient imports
from appweaver.models.app import App, AppStatus
from appweaver.models.chat_message import ChatMessage, MessageRole, MessageStatus
from appweaver.models.app_file import AppFile
from appweaver.models.app_deployment import AppDeployment, DeploymentStatus

__all__ = [
    # App
    "App",
    "AppStatus",
    # Conversation
    "ChatMessage",
    "MessageRole",
    "MessageStatus",
    # Virtual filesystem
    "AppFile",
    # Deployment
    "AppDeployment",
    "DeploymentStatus",
]
