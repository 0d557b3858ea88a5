"""Storage layer for Property Whisperer.

Provides database access via SQLAlchemy (PostgreSQL in production, SQLite
for local runs and tests).
"""

from .database import (
    Base,
    Database,
    JSONType,
)
from .orm_models import (
    DocumentORM,
    ExtractionDraftORM,
    ExtractionRecordORM,
    JobEventORM,
    JobORM,
)
from .repositories import (
    DocumentRepository,
    JobRepository,
)
from .store import ExtractionStore

__all__ = [
    # Database
    "Base",
    "Database",
    "JSONType",
    # ORM Models
    "DocumentORM",
    "JobORM",
    "JobEventORM",
    "ExtractionDraftORM",
    "ExtractionRecordORM",
    # Repositories
    "DocumentRepository",
    "JobRepository",
    "ExtractionStore",
]
