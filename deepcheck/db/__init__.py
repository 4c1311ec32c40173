"""deepcheck.db – media/result persistence."""
from .database import InMemoryMediaStore, MediaRepository

__all__ = ["InMemoryMediaStore", "MediaRepository"]
