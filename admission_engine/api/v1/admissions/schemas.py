from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from admission_engine.core.enums import AdmissionStatus, Gender, InquirySource

# Nepal format: +977-9841234567, 9841234567, 01-4123456
PHONE_PATTERN = r"^(\+977[-\s]?)?[0-9]{7,10}$"
BS_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# ----- Transition payloads -----

class InquiryCreate(BaseModel):
    """Walk-in / phone / online inquiry. A temporary id is issued by the backend."""

    first_name_en: str = Field(..., min_length=1, max_length=50)
    middle_name_en: Optional[str] = Field(None, max_length=50)
    last_name_en: str = Field(..., min_length=1, max_length=50)
    applying_for_class: int = Field(..., ge=1, le=12, description="Class 1-12")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    guardian_name: Optional[str] = Field(None, max_length=100)
    guardian_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    guardian_relation: Optional[str] = Field(None, max_length=50)
    inquiry_source: Optional[InquirySource] = None
    inquiry_notes: Optional[str] = Field(None, max_length=1000)
    academic_year_id: Optional[UUID] = None


class ApplicationSubmit(BaseModel):
    """Fields collected when an inquiry becomes an application. All optional."""

    first_name_np: Optional[str] = Field(None, max_length=50)
    middle_name_np: Optional[str] = Field(None, max_length=50)
    last_name_np: Optional[str] = Field(None, max_length=50)
    date_of_birth_bs: Optional[str] = Field(None, pattern=BS_DATE_PATTERN)
    date_of_birth_ad: Optional[date] = None
    gender: Optional[Gender] = None
    address_en: Optional[str] = Field(None, max_length=255)
    address_np: Optional[str] = Field(None, max_length=255)
    father_name: Optional[str] = Field(None, max_length=100)
    father_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    mother_name: Optional[str] = Field(None, max_length=100)
    mother_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    previous_school: Optional[str] = Field(None, max_length=255)
    previous_class: Optional[int] = Field(None, ge=1, le=12)
    previous_gpa: Optional[float] = Field(None, ge=0, le=4)
    application_fee: Optional[float] = Field(None, ge=0)
    application_fee_paid: Optional[bool] = None


class ScheduleTestRequest(BaseModel):
    test_date: datetime


class RecordTestScoreRequest(BaseModel):
    score: float = Field(..., ge=0)
    max_score: float = Field(..., gt=0)
    remarks: Optional[str] = Field(None, max_length=500)


class ScheduleInterviewRequest(BaseModel):
    interview_date: datetime
    interviewer_name: Optional[str] = Field(None, max_length=100)


class RecordInterviewRequest(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=1000)
    score: Optional[int] = Field(None, ge=0, le=100)


class EnrollRequest(BaseModel):
    current_class_id: Optional[int] = Field(None, gt=0)
    roll_number: Optional[int] = Field(None, gt=0)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ----- Responses -----

class AdmissionResponse(BaseModel):
    id: UUID
    temporary_id: str
    status: AdmissionStatus
    first_name_en: str
    middle_name_en: Optional[str] = None
    last_name_en: str
    first_name_np: Optional[str] = None
    last_name_np: Optional[str] = None
    date_of_birth_bs: Optional[str] = None
    date_of_birth_ad: Optional[date] = None
    gender: Optional[str] = None
    address_en: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    father_name: Optional[str] = None
    father_phone: Optional[str] = None
    mother_name: Optional[str] = None
    mother_phone: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    guardian_relation: Optional[str] = None
    applying_for_class: int
    previous_school: Optional[str] = None
    previous_class: Optional[int] = None
    previous_gpa: Optional[float] = None
    academic_year_id: Optional[UUID] = None
    inquiry_source: Optional[str] = None
    inquiry_notes: Optional[str] = None
    inquiry_date: datetime
    application_date: Optional[datetime] = None
    application_fee: Optional[float] = None
    application_fee_paid: bool = False
    admission_test_date: Optional[datetime] = None
    admission_test_score: Optional[float] = None
    admission_test_max_score: Optional[float] = None
    admission_test_remarks: Optional[str] = None
    interview_date: Optional[datetime] = None
    interviewer_name: Optional[str] = None
    interview_feedback: Optional[str] = None
    interview_score: Optional[int] = None
    admission_date: Optional[datetime] = None
    admission_offer_letter_url: Optional[str] = None
    enrolled_student_id: Optional[UUID] = None
    enrollment_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_date: Optional[datetime] = None
    withdrawal_reason: Optional[str] = None
    withdrawal_date: Optional[datetime] = None
    processed_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AdmissionListResponse(BaseModel):
    items: List[AdmissionResponse]
    total: int


class AvailableTransitionsResponse(BaseModel):
    admission_id: UUID
    status: AdmissionStatus
    available: List[AdmissionStatus]


class StudentResponse(BaseModel):
    id: UUID
    student_code: str
    first_name_en: str
    middle_name_en: Optional[str] = None
    last_name_en: str
    gender: str
    date_of_birth_ad: Optional[date] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    admission_date: datetime
    admission_class: int
    current_class_id: Optional[int] = None
    roll_number: Optional[int] = None
    status: str

    class Config:
        from_attributes = True


class CredentialResponse(BaseModel):
    username: str
    role: str
    temporary_password: Optional[str] = Field(
        None, description="Shown once; null when the account already existed"
    )
    created: bool


class EnrollmentResponse(BaseModel):
    admission: AdmissionResponse
    student: StudentResponse
    student_credentials: CredentialResponse
    parent_credentials: Optional[CredentialResponse] = None


class StudentCodeSummary(BaseModel):
    """Display only: next_code may be taken by the time a student is enrolled."""

    year: int
    issued: int
    next_sequence: Optional[int] = None
    next_code: Optional[str] = Field(None, description="Null once the year has used all 9999 codes")
    exhausted: bool = False
