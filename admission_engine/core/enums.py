from enum import Enum


class AdmissionStatus(str, Enum):
    INQUIRY = "inquiry"
    APPLIED = "applied"
    TEST_SCHEDULED = "test_scheduled"
    TESTED = "tested"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEWED = "interviewed"
    ADMITTED = "admitted"
    ENROLLED = "enrolled"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class InquirySource(str, Enum):
    WALK_IN = "walk-in"
    PHONE = "phone"
    ONLINE = "online"
    REFERRAL = "referral"


class StudentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IdentityRole(str, Enum):
    STUDENT = "STUDENT"
    PARENT = "PARENT"


class NotificationKind(str, Enum):
    INQUIRY = "inquiry"
    APPLICATION = "application"
    TEST_SCHEDULED = "test_scheduled"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    ADMITTED = "admitted"
    ENROLLED = "enrolled"
    REJECTED = "rejected"
