"""
Persistence layer for the practice core.

- base.py: PracticeRepository interface
- memory.py: In-memory implementation (tests, local runs)
- sql.py: SQLAlchemy implementation (import directly; it creates the engine)
"""

from practice_core.repositories.base import PracticeRepository
from practice_core.repositories.memory import InMemoryPracticeRepository

__all__ = ["InMemoryPracticeRepository", "PracticeRepository"]
