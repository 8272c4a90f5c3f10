"""Counters behind human-readable document numbers."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from restopos.db.base import Base


class DocumentSequence(Base):
    """Last number handed out for a scope such as ``order:1:260401``."""

    __tablename__ = "document_sequences"

    scope: Mapped[str] = mapped_column(String(60), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
