"""Database utilities and models."""

from sentinel.db.base import Base
from sentinel.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
