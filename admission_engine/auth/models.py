import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from admission_engine.db.session import Base


class User(Base):
    """Login identity. Staff users act on admissions; STUDENT/PARENT users are provisioned at enrollment."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Unique login name; for provisioned identities derived from the student code (sch.2024.0001)
    username = Column(String(100), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    mobile = Column(String(50), nullable=True)
    password_hash = Column(Text, nullable=False)
    # High-level role: SUPER_ADMIN, ADMIN, STAFF, STUDENT, PARENT
    role = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    # Origin: SYSTEM, STAFF, ENROLLMENT
    source = Column(String(50), nullable=False, default="SYSTEM")
    # Set for STUDENT and PARENT identities
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", foreign_keys=[student_id])


class Role(Base):
    """Role with JSON permissions."""

    __tablename__ = "roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    # Example shape:
    # {
    #   "admissions": {"create": true, "read": true, "update": true},
    # }
    permissions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
