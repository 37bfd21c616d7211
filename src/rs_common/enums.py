"""Global enums — must match DB CHECK constraints exactly.

Ref: alembic/versions/001_create_ressourcerie_tables.py
"""

from enum import Enum


class OfferStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


class DemandStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
