"""Package for ORM model definitions."""

from db.models.map import Map
from db.models.user import User

__all__ = ["Map", "User"]
