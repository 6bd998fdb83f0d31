"""Application package.

Small, explicit package initializer for ``salon.app``: exposes the database
helpers and the domain models.
"""

from .core import db
from .domain import models

__all__ = ["db", "models"]
