"""Column types shared by SQLite (tests, local) and PostgreSQL (production)"""
from sqlalchemy import TypeDecorator, String
import uuid


def generate_uuid() -> str:
    return str(uuid.uuid4())


class GUID(TypeDecorator):
    """
    UUID primary/foreign keys stored as VARCHAR(36) on every dialect.

    Values round-trip as plain strings, so IDs read from the database compare
    equal to the IDs carried in Celery task arguments and Redis state.
    """
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else str(value)
