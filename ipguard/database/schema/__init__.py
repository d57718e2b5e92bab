from .base import Base, metadata
from . import security

__all__ = [
    "Base",
    "metadata",
    "security",
]
