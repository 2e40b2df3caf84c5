"""
Student created by enrollment. student_code is issued by the code issuer
(<SCHOOL_CODE>-<YEAR>-<SEQ4>) and never edited after creation.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID

from admission_engine.core.enums import Gender, StudentStatus
from admission_engine.db.session import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_code = Column(String(50), nullable=False, unique=True, index=True)

    first_name_en = Column(String(50), nullable=False)
    middle_name_en = Column(String(50), nullable=True)
    last_name_en = Column(String(50), nullable=False)
    first_name_np = Column(String(50), nullable=True)
    middle_name_np = Column(String(50), nullable=True)
    last_name_np = Column(String(50), nullable=True)
    date_of_birth_bs = Column(String(10), nullable=True)
    date_of_birth_ad = Column(Date, nullable=True)
    gender = Column(String(10), nullable=False, default=Gender.OTHER.value)

    address_en = Column(String(255), nullable=True)
    address_np = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)

    father_name = Column(String(100), nullable=True)
    father_phone = Column(String(20), nullable=True)
    mother_name = Column(String(100), nullable=True)
    mother_phone = Column(String(20), nullable=True)
    local_guardian_name = Column(String(100), nullable=True)
    local_guardian_phone = Column(String(20), nullable=True)
    local_guardian_relation = Column(String(50), nullable=True)
    emergency_contact = Column(String(20), nullable=True)

    admission_date = Column(DateTime(timezone=True), nullable=False)
    admission_class = Column(Integer, nullable=False)
    current_class_id = Column(Integer, nullable=True)
    roll_number = Column(Integer, nullable=True)
    previous_school = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default=StudentStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def full_name_en(self) -> str:
        parts = [self.first_name_en, self.middle_name_en, self.last_name_en]
        return " ".join(p for p in parts if p)
