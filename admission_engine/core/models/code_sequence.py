"""
Per-scope counter for sequential codes. One row per (prefix, segment, year);
the row is the lock target for issuance. last_value only ever grows.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from admission_engine.db.session import Base


class CodeSequence(Base):
    __tablename__ = "code_sequences"
    __table_args__ = (
        UniqueConstraint("prefix", "segment", "year", name="uq_code_sequence_scope"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prefix = Column(String(20), nullable=False)
    # "" for student codes, "INQ" for inquiry temporary ids
    segment = Column(String(10), nullable=False, default="")
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
