"""
Admission record: created at inquiry, mutated only by the workflow engine's
transition handlers, immutable once enrolled/rejected/withdrawn. Never deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from admission_engine.core.enums import AdmissionStatus
from admission_engine.db.session import Base


class Admission(Base):
    __tablename__ = "admissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    temporary_id = Column(String(50), nullable=False, unique=True, index=True)

    # Applicant
    first_name_en = Column(String(50), nullable=False)
    middle_name_en = Column(String(50), nullable=True)
    last_name_en = Column(String(50), nullable=False)
    first_name_np = Column(String(50), nullable=True)
    middle_name_np = Column(String(50), nullable=True)
    last_name_np = Column(String(50), nullable=True)
    date_of_birth_bs = Column(String(10), nullable=True)
    date_of_birth_ad = Column(Date, nullable=True)
    gender = Column(String(10), nullable=True)

    # Contact
    address_en = Column(String(255), nullable=True)
    address_np = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)

    # Guardians
    father_name = Column(String(100), nullable=True)
    father_phone = Column(String(20), nullable=True)
    mother_name = Column(String(100), nullable=True)
    mother_phone = Column(String(20), nullable=True)
    guardian_name = Column(String(100), nullable=True)
    guardian_phone = Column(String(20), nullable=True)
    guardian_relation = Column(String(50), nullable=True)

    # Academic
    applying_for_class = Column(Integer, nullable=False)
    previous_school = Column(String(255), nullable=True)
    previous_class = Column(Integer, nullable=True)
    previous_gpa = Column(Float, nullable=True)
    academic_year_id = Column(UUID(as_uuid=True), nullable=True)

    status = Column(String(30), nullable=False, default=AdmissionStatus.INQUIRY.value, index=True)

    # Inquiry stage
    inquiry_date = Column(DateTime(timezone=True), nullable=False)
    inquiry_source = Column(String(20), nullable=True)  # walk-in | phone | online | referral
    inquiry_notes = Column(Text, nullable=True)

    # Application stage
    application_date = Column(DateTime(timezone=True), nullable=True)
    application_fee = Column(Float, nullable=True)
    application_fee_paid = Column(Boolean, nullable=False, default=False)

    # Test stage; admission_test_date is the scheduled date
    admission_test_date = Column(DateTime(timezone=True), nullable=True)
    admission_test_score = Column(Float, nullable=True)
    admission_test_max_score = Column(Float, nullable=True)
    admission_test_remarks = Column(Text, nullable=True)

    # Interview stage; interview_date is the scheduled date
    interview_date = Column(DateTime(timezone=True), nullable=True)
    interviewer_name = Column(String(100), nullable=True)
    interview_feedback = Column(Text, nullable=True)
    interview_score = Column(Integer, nullable=True)

    # Admission stage
    admission_date = Column(DateTime(timezone=True), nullable=True)
    admission_offer_letter_url = Column(String(500), nullable=True)

    # Enrollment; Admission references Student, never the reverse
    enrolled_student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="RESTRICT"), nullable=True)
    enrollment_date = Column(DateTime(timezone=True), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    rejection_date = Column(DateTime(timezone=True), nullable=True)
    withdrawal_reason = Column(Text, nullable=True)
    withdrawal_date = Column(DateTime(timezone=True), nullable=True)

    processed_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    # Optimistic concurrency: a concurrent writer fails with StaleDataError on flush
    version = Column(Integer, nullable=False, default=1)

    enrolled_student = relationship("Student", foreign_keys=[enrolled_student_id])

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> AdmissionStatus:
        return AdmissionStatus(self.status)

    def full_name_en(self) -> str:
        parts = [self.first_name_en, self.middle_name_en, self.last_name_en]
        return " ".join(p for p in parts if p)

    def contact_phone(self):
        """Guardian phone, else father's, else mother's."""
        return self.guardian_phone or self.father_phone or self.mother_phone
