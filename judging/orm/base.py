"""
judging/orm/base.py
Declarative base for all ORM models
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import Enum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def as_float(value: Optional[Decimal]) -> Optional[float]:
    """Numeric columns come back as Decimal; JSON payloads carry floats."""
    return float(value) if value is not None else None


def enum_column(enum_cls):
    """Stores the enum's value (not its name) in a VARCHAR with a CHECK constraint."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        create_constraint=True,
        length=20,
    )
