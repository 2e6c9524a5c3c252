"""SQLAlchemy database models."""
from dotenv import load_dotenv
from keyword_pipeline.models.base import Base
from keyword_pipeline.models.checkpoint import BatchCheckpoint

load_dotenv()

__all__ = [
    "Base",
    "BatchCheckpoint",
]
