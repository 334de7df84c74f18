"""Database models."""

from carebook.models.appointments import appointments
from carebook.models.users import metadata, users

__all__ = [
    "appointments",
    "metadata",
    "users",
]
