"""Storage backends for the booking engine."""

from booking_engine.repositories.base import Repository
from booking_engine.repositories.memory import InMemoryRepository
from booking_engine.repositories.sql import SqlAlchemyRepository

__all__ = [
    "Repository",
    "InMemoryRepository",
    "SqlAlchemyRepository",
]
