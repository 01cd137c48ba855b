"""
Home Digest API package.

This package handles:
- Database setup and access
- Pydantic models for API requests/responses
"""

from . import db
from .models import DigestRequest, Settings


# Initialize database on package import
db.init_db()

# Expose common objects for easier imports
from .db import add_digest, get_digest, get_digests

__all__ = [
    "add_digest",
    "get_digest",
    "get_digests",
    "DigestRequest",
    "Settings",
]
