"""
Enrollment: admitted -> enrolled.

Runs as an ordered saga inside one unit of work:

    load_admission        admission must exist and be admitted
    allocate_code         student code, locked scope row (year of admission date)
    create_student        Student copied from the admission
    mark_enrolled         admission row re-read under lock, status/links/date set
    provision_identities  student + parent logins, existence-checked by username

Lock order is fixed: code-sequence row first, then the admission row.
Any failing step rolls back every step before it (no student, no code, no
status change, no identities). The credential notification goes out only after
commit and never undoes the enrollment.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from admission_engine.auth.services import EnrollmentCredentials, provision_enrollment_identities
from admission_engine.core.code_issuer import issue_student_code
from admission_engine.core.enums import AdmissionStatus, Gender, NotificationKind, StudentStatus
from admission_engine.core.exceptions import AdmissionNotFound, IllegalTransition, ServiceError
from admission_engine.core.logging import get_logger
from admission_engine.core.models import Admission, Student
from admission_engine.core.workflow import TransitionPolicy
from admission_engine.integrations.notifications import NotificationDispatcher

from . import audit_service
from .schemas import EnrollRequest
from .unit_of_work import notify_best_effort, run_unit_of_work

logger = get_logger(__name__)


@dataclass
class EnrollmentResult:
    admission: Admission
    student: Student
    credentials: EnrollmentCredentials


@dataclass
class _EnrollmentContext:
    admission_id: UUID
    request: EnrollRequest
    actor_id: Optional[UUID]
    actor_role: Optional[str]
    now: datetime
    admission: Optional[Admission] = None
    student_code: Optional[str] = None
    student: Optional[Student] = None
    credentials: Optional[EnrollmentCredentials] = None


class EnrollmentFinalizer:
    STEPS = (
        "load_admission",
        "allocate_code",
        "create_student",
        "mark_enrolled",
        "provision_identities",
    )

    def __init__(
        self,
        notifier: NotificationDispatcher,
        *,
        policy: TransitionPolicy,
        school_code: str,
        school_name: str,
        clock: Callable[[], datetime],
        retry_attempts: int,
    ) -> None:
        self.notifier = notifier
        self.policy = policy
        self.school_code = school_code
        self.school_name = school_name
        self.clock = clock
        self.retry_attempts = retry_attempts

    async def finalize(
        self,
        db: AsyncSession,
        admission_id: UUID,
        request: EnrollRequest,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EnrollmentResult:
        async def operation() -> EnrollmentResult:
            ctx = _EnrollmentContext(
                admission_id=admission_id,
                request=request,
                actor_id=actor_id,
                actor_role=actor_role,
                now=self.clock(),
            )
            await self._run_steps(db, ctx)
            return EnrollmentResult(admission=ctx.admission, student=ctx.student, credentials=ctx.credentials)

        result = await run_unit_of_work(
            db, operation, name="enroll", attempts=self.retry_attempts, timeout=timeout
        )
        logger.info(
            "Applicant enrolled as student",
            admission_id=str(admission_id),
            student_id=str(result.student.id),
            student_code=result.student.student_code,
            student_account_created=result.credentials.student.created,
            parent_account_created=bool(result.credentials.parent and result.credentials.parent.created),
        )
        await self._notify(result)
        return result

    async def _run_steps(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        for step in self.STEPS:
            try:
                await getattr(self, f"_{step}")(db, ctx)
            except ServiceError:
                raise
            except Exception as e:
                logger.error(
                    "Enrollment step failed, rolling back",
                    step=step,
                    admission_id=str(ctx.admission_id),
                    error=str(e),
                )
                raise

    # ----- Steps -----

    def _check_admitted(self, admission: Admission) -> None:
        current = admission.status_enum
        if not self.policy.can_transition(current, AdmissionStatus.ENROLLED):
            raise IllegalTransition(current, AdmissionStatus.ENROLLED, "enroll")

    async def _load_admission(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        # Unlocked read: the admission lock is taken after the code lock (mark_enrolled)
        result = await db.execute(
            select(Admission)
            .where(Admission.id == ctx.admission_id)
            .execution_options(populate_existing=True)
        )
        admission = result.scalar_one_or_none()
        if not admission:
            raise AdmissionNotFound(ctx.admission_id)
        self._check_admitted(admission)
        ctx.admission = admission

    async def _allocate_code(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        year = (ctx.admission.admission_date or ctx.now).year
        ctx.student_code = await issue_student_code(db, year, self.school_code)

    async def _create_student(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        a = ctx.admission
        student = Student(
            student_code=ctx.student_code,
            first_name_en=a.first_name_en,
            middle_name_en=a.middle_name_en,
            last_name_en=a.last_name_en,
            first_name_np=a.first_name_np,
            middle_name_np=a.middle_name_np,
            last_name_np=a.last_name_np,
            date_of_birth_bs=a.date_of_birth_bs,
            date_of_birth_ad=a.date_of_birth_ad,
            gender=a.gender or Gender.OTHER.value,
            address_en=a.address_en,
            address_np=a.address_np,
            phone=a.phone,
            email=a.email,
            father_name=a.father_name,
            father_phone=a.father_phone,
            mother_name=a.mother_name,
            mother_phone=a.mother_phone,
            local_guardian_name=a.guardian_name,
            local_guardian_phone=a.guardian_phone,
            local_guardian_relation=a.guardian_relation,
            emergency_contact=a.contact_phone(),
            admission_date=a.admission_date or ctx.now,
            admission_class=a.applying_for_class,
            current_class_id=ctx.request.current_class_id,
            roll_number=ctx.request.roll_number,
            previous_school=a.previous_school,
            status=StudentStatus.ACTIVE.value,
        )
        db.add(student)
        await db.flush()
        ctx.student = student

    async def _mark_enrolled(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        result = await db.execute(
            select(Admission)
            .where(Admission.id == ctx.admission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        admission = result.scalar_one()
        # Another transition may have landed between load_admission and the lock
        self._check_admitted(admission)
        from_status = admission.status
        admission.status = AdmissionStatus.ENROLLED.value
        admission.enrolled_student_id = ctx.student.id
        admission.enrollment_date = ctx.now
        admission.processed_by = ctx.actor_id
        await db.flush()
        await audit_service.log_audit(
            db,
            "admission",
            admission.id,
            "admission_enrolled",
            from_status=from_status,
            to_status=AdmissionStatus.ENROLLED.value,
            performed_by=ctx.actor_id,
            performed_by_role=ctx.actor_role,
            remarks=f"Student code {ctx.student_code}",
        )
        ctx.admission = admission

    async def _provision_identities(self, db: AsyncSession, ctx: _EnrollmentContext) -> None:
        a = ctx.admission
        ctx.credentials = await provision_enrollment_identities(
            db,
            student_code=ctx.student_code,
            student_id=ctx.student.id,
            student_name=a.full_name_en(),
            student_email=a.email,
            guardian_name=a.guardian_name or a.father_name or a.mother_name,
            guardian_phone=a.contact_phone(),
            guardian_email=a.email,
        )

    # ----- After commit -----

    async def _notify(self, result: EnrollmentResult) -> None:
        credentials = result.credentials
        payload: Dict[str, Any] = {
            "applicant_name": result.admission.full_name_en(),
            "student_code": result.student.student_code,
            "school_name": self.school_name,
            "student_username": credentials.student.username,
            "student_password": credentials.student.temporary_password,
        }
        if credentials.parent is not None:
            payload["parent_username"] = credentials.parent.username
            payload["parent_password"] = credentials.parent.temporary_password
        await notify_best_effort(
            self.notifier,
            result.admission.contact_phone(),
            NotificationKind.ENROLLED.value,
            payload,
        )
