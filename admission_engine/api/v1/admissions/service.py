"""
Admission workflow engine: inquiry -> application -> test -> interview -> admission -> enrollment.

Each transition locks the admission row, checks the move against the transition
table, applies the payload, stamps the stage timestamp, writes an audit entry and
commits. Notifications are sent after commit and are best-effort. The offer
letter is mandatory: admit fails, and nothing changes, if it cannot be generated.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from admission_engine.core.code_issuer import (
    MAX_SEQUENCE,
    count_issued,
    issue_temporary_id,
    peek_next,
    student_code_scope,
)
from admission_engine.core.config import Settings, settings as default_settings
from admission_engine.core.enums import AdmissionStatus, NotificationKind
from admission_engine.core.exceptions import AdmissionNotFound, DependencyFailure, IllegalTransition, ValidationFailed
from admission_engine.core.logging import get_logger
from admission_engine.core.models import Admission
from admission_engine.core.workflow import TransitionPolicy
from admission_engine.integrations.documents import DocumentGenerator
from admission_engine.integrations.notifications import NotificationDispatcher

from . import audit_service
from .enrollment import EnrollmentFinalizer, EnrollmentResult
from .schemas import (
    ApplicationSubmit,
    EnrollRequest,
    InquiryCreate,
    RecordInterviewRequest,
    RecordTestScoreRequest,
    ScheduleInterviewRequest,
    ScheduleTestRequest,
)
from .unit_of_work import notify_best_effort, run_unit_of_work

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100

Mutation = Callable[[Admission], None]


def _stamp(admission: Admission, field: str, value: datetime, target: AdmissionStatus) -> None:
    """Workflow timestamps are write-once."""
    if getattr(admission, field) is not None:
        raise IllegalTransition(admission.status_enum, target)
    setattr(admission, field, value)


class AdmissionWorkflowEngine:
    def __init__(
        self,
        notifier: NotificationDispatcher,
        documents: DocumentGenerator,
        *,
        config: Optional[Settings] = None,
        policy: Optional[TransitionPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or default_settings
        self.notifier = notifier
        self.documents = documents
        self.policy = policy or TransitionPolicy(
            allow_interview_without_test=self.config.allow_interview_without_test
        )
        self.clock = clock or datetime.utcnow
        self.finalizer = EnrollmentFinalizer(
            notifier,
            policy=self.policy,
            school_code=self.config.school_code,
            school_name=self.config.school_name,
            clock=self.clock,
            retry_attempts=self.config.store_retry_attempts,
        )

    # ----- Internals -----

    def _deadline(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.config.operation_timeout_seconds

    async def _run(self, db: AsyncSession, operation, *, name: str, timeout: Optional[float]):
        return await run_unit_of_work(
            db,
            operation,
            name=name,
            attempts=self.config.store_retry_attempts,
            timeout=self._deadline(timeout),
        )

    async def _lock_admission(self, db: AsyncSession, admission_id: UUID) -> Admission:
        result = await db.execute(
            select(Admission)
            .where(Admission.id == admission_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        admission = result.scalar_one_or_none()
        if not admission:
            raise AdmissionNotFound(admission_id)
        return admission

    async def _transition(
        self,
        db: AsyncSession,
        admission_id: UUID,
        target: AdmissionStatus,
        *,
        action: str,
        audit_action: str,
        mutate: Mutation,
        exact_source: Optional[AdmissionStatus] = None,
        prepare: Optional[Callable[[Admission], Any]] = None,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        remarks: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        """
        Locked read, precondition, optional prepare step, mutation, audit, commit.

        exact_source: recording operations require the record to be in exactly this
        status instead of checking graph membership.
        prepare: awaited after the precondition and before any write (offer letter).
        """

        async def operation() -> Admission:
            admission = await self._lock_admission(db, admission_id)
            current = admission.status_enum
            if exact_source is not None:
                if current != exact_source:
                    raise IllegalTransition(current, target, action, exact=True)
            elif not self.policy.can_transition(current, target):
                raise IllegalTransition(current, target, action)
            if prepare is not None:
                await prepare(admission)
            mutate(admission)
            admission.status = target.value
            admission.processed_by = actor_id
            await db.flush()
            await audit_service.log_audit(
                db,
                "admission",
                admission.id,
                audit_action,
                from_status=current.value,
                to_status=target.value,
                performed_by=actor_id,
                performed_by_role=actor_role,
                remarks=remarks,
            )
            return admission

        admission = await self._run(db, operation, name=action, timeout=timeout)
        logger.info(
            "Admission transition",
            admission_id=str(admission.id),
            temporary_id=admission.temporary_id,
            action=audit_action,
            status=admission.status,
        )
        return admission

    def _notification_payload(self, admission: Admission, **extra: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "applicant_name": admission.full_name_en(),
            "temporary_id": admission.temporary_id,
            "school_name": self.config.school_name,
        }
        payload.update(extra)
        return payload

    async def _notify(self, admission: Admission, kind: NotificationKind, **extra: Any) -> None:
        await notify_best_effort(
            self.notifier,
            admission.contact_phone(),
            kind.value,
            self._notification_payload(admission, **extra),
        )

    # ----- Inquiry -----

    async def create_inquiry(
        self,
        db: AsyncSession,
        payload: InquiryCreate,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        """Create an inquiry with a temporary id <PREFIX>-INQ-<YEAR>-<SEQ4>."""
        now = self.clock()

        async def operation() -> Admission:
            temporary_id = await issue_temporary_id(db, now.year, self.config.school_code)
            admission = Admission(
                temporary_id=temporary_id,
                first_name_en=payload.first_name_en.strip(),
                middle_name_en=payload.middle_name_en.strip() if payload.middle_name_en else None,
                last_name_en=payload.last_name_en.strip(),
                applying_for_class=payload.applying_for_class,
                phone=payload.phone,
                email=str(payload.email) if payload.email else None,
                guardian_name=payload.guardian_name,
                guardian_phone=payload.guardian_phone,
                guardian_relation=payload.guardian_relation,
                inquiry_source=payload.inquiry_source.value if payload.inquiry_source else None,
                inquiry_notes=payload.inquiry_notes,
                academic_year_id=payload.academic_year_id,
                status=AdmissionStatus.INQUIRY.value,
                inquiry_date=now,
                application_fee_paid=False,
                processed_by=actor_id,
            )
            db.add(admission)
            await db.flush()
            await audit_service.log_audit(
                db,
                "admission",
                admission.id,
                "inquiry_created",
                to_status=AdmissionStatus.INQUIRY.value,
                performed_by=actor_id,
                performed_by_role=actor_role,
            )
            return admission

        admission = await self._run(db, operation, name="create inquiry", timeout=timeout)
        logger.info(
            "Admission inquiry created",
            admission_id=str(admission.id),
            temporary_id=admission.temporary_id,
        )
        await self._notify(admission, NotificationKind.INQUIRY)
        return admission

    # ----- Transitions -----

    async def convert_to_application(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: ApplicationSubmit,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        fields = payload.model_dump(exclude_none=True)
        if payload.gender is not None:
            fields["gender"] = payload.gender.value
        now = self.clock()

        def mutate(admission: Admission) -> None:
            for key, value in fields.items():
                setattr(admission, key, value)
            _stamp(admission, "application_date", now, AdmissionStatus.APPLIED)

        admission = await self._transition(
            db,
            admission_id,
            AdmissionStatus.APPLIED,
            action="convert to application",
            audit_action="application_submitted",
            mutate=mutate,
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=timeout,
        )
        await self._notify(admission, NotificationKind.APPLICATION)
        return admission

    async def schedule_test(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: ScheduleTestRequest,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        def mutate(admission: Admission) -> None:
            _stamp(admission, "admission_test_date", payload.test_date, AdmissionStatus.TEST_SCHEDULED)

        admission = await self._transition(
            db,
            admission_id,
            AdmissionStatus.TEST_SCHEDULED,
            action="schedule test",
            audit_action="test_scheduled",
            mutate=mutate,
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=timeout,
        )
        await self._notify(admission, NotificationKind.TEST_SCHEDULED, test_date=payload.test_date)
        return admission

    async def record_test_score(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: RecordTestScoreRequest,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        if payload.score > payload.max_score:
            raise ValidationFailed("score", "Score cannot exceed max score")

        def mutate(admission: Admission) -> None:
            admission.admission_test_score = payload.score
            admission.admission_test_max_score = payload.max_score
            admission.admission_test_remarks = payload.remarks

        return await self._transition(
            db,
            admission_id,
            AdmissionStatus.TESTED,
            action="record test score",
            audit_action="test_score_recorded",
            mutate=mutate,
            exact_source=AdmissionStatus.TEST_SCHEDULED,
            actor_id=actor_id,
            actor_role=actor_role,
            remarks=f"Score {payload.score:g}/{payload.max_score:g}",
            timeout=timeout,
        )

    async def schedule_interview(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: ScheduleInterviewRequest,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        def mutate(admission: Admission) -> None:
            _stamp(admission, "interview_date", payload.interview_date, AdmissionStatus.INTERVIEW_SCHEDULED)
            admission.interviewer_name = payload.interviewer_name

        admission = await self._transition(
            db,
            admission_id,
            AdmissionStatus.INTERVIEW_SCHEDULED,
            action="schedule interview",
            audit_action="interview_scheduled",
            mutate=mutate,
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=timeout,
        )
        await self._notify(admission, NotificationKind.INTERVIEW_SCHEDULED, interview_date=payload.interview_date)
        return admission

    async def record_interview(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: RecordInterviewRequest,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        if not payload.feedback.strip():
            raise ValidationFailed("feedback", "Feedback is required")

        def mutate(admission: Admission) -> None:
            admission.interview_feedback = payload.feedback.strip()
            admission.interview_score = payload.score

        return await self._transition(
            db,
            admission_id,
            AdmissionStatus.INTERVIEWED,
            action="record interview",
            audit_action="interview_recorded",
            mutate=mutate,
            exact_source=AdmissionStatus.INTERVIEW_SCHEDULED,
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=timeout,
        )

    async def admit(
        self,
        db: AsyncSession,
        admission_id: UUID,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        """Admit and issue the offer letter. No letter, no admission."""
        now = self.clock()
        letter: Dict[str, str] = {}

        async def generate_offer_letter(admission: Admission) -> None:
            # A storage retry re-runs the operation; the letter is rendered once
            if letter.get("url"):
                return
            offer = {
                "temporary_id": admission.temporary_id,
                "applicant_name": admission.full_name_en(),
                "applying_for_class": admission.applying_for_class,
                "admission_date": now,
                "school_name": self.config.school_name,
                "school_address": self.config.school_address,
                "principal_name": self.config.principal_name,
                "valid_until": now + timedelta(days=self.config.offer_letter_valid_days),
            }
            try:
                letter["url"] = await self.documents.generate_offer_letter(offer)
            except Exception as e:
                logger.error(
                    "Offer letter generation failed; admission unchanged",
                    admission_id=str(admission.id),
                    error=str(e),
                )
                raise DependencyFailure("document_generator", "Offer letter could not be generated") from e
            if not letter["url"]:
                raise DependencyFailure("document_generator", "Offer letter could not be generated")

        def mutate(admission: Admission) -> None:
            _stamp(admission, "admission_date", now, AdmissionStatus.ADMITTED)
            admission.admission_offer_letter_url = letter["url"]

        admission = await self._transition(
            db,
            admission_id,
            AdmissionStatus.ADMITTED,
            action="admit",
            audit_action="admission_offered",
            mutate=mutate,
            prepare=generate_offer_letter,
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=timeout,
        )
        await self._notify(admission, NotificationKind.ADMITTED)
        return admission

    async def enroll(
        self,
        db: AsyncSession,
        admission_id: UUID,
        payload: Optional[EnrollRequest] = None,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EnrollmentResult:
        return await self.finalizer.finalize(
            db,
            admission_id,
            payload or EnrollRequest(),
            actor_id=actor_id,
            actor_role=actor_role,
            timeout=self._deadline(timeout),
        )

    async def reject(
        self,
        db: AsyncSession,
        admission_id: UUID,
        reason: str,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailed("reason", "Rejection reason is required")
        now = self.clock()

        def mutate(admission: Admission) -> None:
            admission.rejection_reason = reason
            _stamp(admission, "rejection_date", now, AdmissionStatus.REJECTED)

        admission = await self._transition(
            db,
            admission_id,
            AdmissionStatus.REJECTED,
            action="reject",
            audit_action="admission_rejected",
            mutate=mutate,
            actor_id=actor_id,
            actor_role=actor_role,
            remarks=reason,
            timeout=timeout,
        )
        await self._notify(admission, NotificationKind.REJECTED)
        return admission

    async def withdraw(
        self,
        db: AsyncSession,
        admission_id: UUID,
        reason: Optional[str] = None,
        *,
        actor_id: Optional[UUID] = None,
        actor_role: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Admission:
        reason = reason.strip() if reason and reason.strip() else None
        now = self.clock()

        def mutate(admission: Admission) -> None:
            admission.withdrawal_reason = reason
            _stamp(admission, "withdrawal_date", now, AdmissionStatus.WITHDRAWN)

        return await self._transition(
            db,
            admission_id,
            AdmissionStatus.WITHDRAWN,
            action="withdraw",
            audit_action="admission_withdrawn",
            mutate=mutate,
            actor_id=actor_id,
            actor_role=actor_role,
            remarks=reason,
            timeout=timeout,
        )

    # ----- Queries -----

    async def get_admission(self, db: AsyncSession, admission_id: UUID) -> Admission:
        admission = await db.get(Admission, admission_id, populate_existing=True)
        if not admission:
            raise AdmissionNotFound(admission_id)
        return admission

    async def available_transitions(
        self, db: AsyncSession, admission_id: UUID
    ) -> Tuple[Admission, List[AdmissionStatus]]:
        admission = await self.get_admission(db, admission_id)
        targets = sorted(self.policy.targets(admission.status_enum), key=lambda s: list(AdmissionStatus).index(s))
        return admission, targets

    async def list_admissions(
        self,
        db: AsyncSession,
        *,
        status_filter: Optional[AdmissionStatus] = None,
        applying_for_class: Optional[int] = None,
        academic_year_id: Optional[UUID] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Admission], int]:
        conditions = []
        if status_filter:
            conditions.append(Admission.status == status_filter.value)
        if applying_for_class:
            conditions.append(Admission.applying_for_class == applying_for_class)
        if academic_year_id:
            conditions.append(Admission.academic_year_id == academic_year_id)
        if search and search.strip():
            term = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Admission.first_name_en.ilike(term),
                    Admission.last_name_en.ilike(term),
                    Admission.temporary_id.ilike(term),
                )
            )
        total = (await db.execute(select(func.count(Admission.id)).where(*conditions))).scalar() or 0
        q = (
            select(Admission)
            .where(*conditions)
            .order_by(Admission.created_at.desc())
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
            .offset(max(offset, 0))
        )
        rows = (await db.execute(q)).scalars().all()
        return list(rows), total

    async def student_code_summary(self, db: AsyncSession, year: int) -> Dict[str, Any]:
        """Issued count and the next code for display. Not a reservation."""
        next_sequence = await peek_next(db, year, self.config.school_code)
        exhausted = next_sequence > MAX_SEQUENCE
        scope = student_code_scope(year, self.config.school_code)
        return {
            "year": year,
            "issued": await count_issued(db, year, self.config.school_code),
            "next_sequence": None if exhausted else next_sequence,
            "next_code": None if exhausted else scope.render(next_sequence),
            "exhausted": exhausted,
        }
