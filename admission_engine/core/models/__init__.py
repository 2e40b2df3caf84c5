from admission_engine.core.models.student import Student
from admission_engine.core.models.admission import Admission
from admission_engine.core.models.code_sequence import CodeSequence
from admission_engine.core.models.audit_log import AuditLog

__all__ = [
    "Admission",
    "AuditLog",
    "CodeSequence",
    "Student",
]
