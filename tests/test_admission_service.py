"""Admission workflow engine: transitions, enrollment saga and collaborator failures."""

import asyncio
from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from admission_engine.api.v1.admissions import audit_service
from admission_engine.api.v1.admissions.schemas import (
    ApplicationSubmit,
    EnrollRequest,
    InquiryCreate,
    RecordInterviewRequest,
    RecordTestScoreRequest,
    ScheduleInterviewRequest,
    ScheduleTestRequest,
)
from admission_engine.api.v1.admissions.service import AdmissionWorkflowEngine
from admission_engine.auth.models import User
from admission_engine.auth.security import verify_password
from admission_engine.auth.services import provision_enrollment_identities
from admission_engine.core.code_issuer import MAX_SEQUENCE
from admission_engine.core.config import settings
from admission_engine.core.enums import AdmissionStatus, Gender, InquirySource
from admission_engine.core.exceptions import (
    AdmissionNotFound,
    DependencyFailure,
    IllegalTransition,
    ValidationFailed,
)
from admission_engine.core.models import Admission, CodeSequence, Student
from admission_engine.core.workflow import DEFAULT_POLICY, TransitionPolicy


def aarav_inquiry(**overrides) -> InquiryCreate:
    data = dict(
        first_name_en="Aarav",
        last_name_en="Shah",
        applying_for_class=5,
        guardian_name="Rajesh Shah",
        guardian_phone="9841234567",
        guardian_relation="Father",
        inquiry_source=InquirySource.WALK_IN,
    )
    data.update(overrides)
    return InquiryCreate(**data)


async def new_admission(workflow, db, **overrides):
    admission = await workflow.create_inquiry(db, aarav_inquiry(**overrides))
    return admission.id


async def to_applied(workflow, db):
    admission_id = await new_admission(workflow, db)
    await workflow.convert_to_application(db, admission_id, ApplicationSubmit(gender=Gender.MALE))
    return admission_id


async def to_admitted(workflow, db):
    admission_id = await to_applied(workflow, db)
    await workflow.admit(db, admission_id)
    return admission_id


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


# ----- Scenario -----

async def test_inquiry_to_enrollment(workflow, db_session, notifier, documents) -> None:
    admission = await workflow.create_inquiry(db_session, aarav_inquiry())
    admission_id = admission.id
    assert admission.temporary_id == "SCH-INQ-2024-0001"
    assert admission.status == AdmissionStatus.INQUIRY.value
    assert admission.inquiry_date == datetime(2024, 4, 15, 10, 30)

    admission = await workflow.convert_to_application(
        db_session, admission_id, ApplicationSubmit(gender=Gender.MALE, father_name="Rajesh Shah")
    )
    assert admission.status == AdmissionStatus.APPLIED.value
    assert admission.gender == "male"
    assert admission.application_date is not None

    with pytest.raises(IllegalTransition) as exc:
        await workflow.convert_to_application(db_session, admission_id, ApplicationSubmit())
    assert exc.value.message == "Cannot convert to application from status: applied"

    admission = await workflow.admit(db_session, admission_id)
    assert admission.status == AdmissionStatus.ADMITTED.value
    assert admission.admission_offer_letter_url.endswith("SCH-INQ-2024-0001.pdf")
    offer = documents.calls[0]
    assert offer["applicant_name"] == "Aarav Shah"
    assert offer["applying_for_class"] == 5
    assert (offer["valid_until"] - offer["admission_date"]).days == settings.offer_letter_valid_days

    result = await workflow.enroll(db_session, admission_id, EnrollRequest(roll_number=12))
    assert result.student.student_code == "SCH-2024-0001"
    assert result.student.first_name_en == "Aarav"
    assert result.student.admission_class == 5
    assert result.student.roll_number == 12
    assert result.student.local_guardian_phone == "9841234567"
    assert result.admission.status == AdmissionStatus.ENROLLED.value
    assert result.admission.enrolled_student_id == result.student.id
    assert result.credentials.student.username == "sch.2024.0001"
    assert result.credentials.parent.username == "parent.sch.2024.0001"
    assert result.credentials.student.created and result.credentials.parent.created

    users = (await db_session.execute(select(User).order_by(User.username))).scalars().all()
    assert [u.username for u in users] == ["parent.sch.2024.0001", "sch.2024.0001"]
    student_user = users[1]
    assert student_user.role == "STUDENT"
    assert student_user.student_id == result.student.id
    assert verify_password(result.credentials.student.temporary_password, student_user.password_hash)

    with pytest.raises(IllegalTransition):
        await workflow.enroll(db_session, admission_id)
    assert await count(db_session, Student) == 1
    assert await count(db_session, User) == 2

    assert notifier.kinds() == ["inquiry", "application", "admitted", "enrolled"]
    destination, _, payload = notifier.sent[-1]
    assert destination == "9841234567"
    assert payload["student_code"] == "SCH-2024-0001"
    assert payload["parent_username"] == "parent.sch.2024.0001"


async def test_audit_trail_records_each_change(workflow, db_session) -> None:
    admission_id = await to_admitted(workflow, db_session)
    entries = await audit_service.list_audit(db_session, admission_id)
    assert [e.action for e in entries] == ["inquiry_created", "application_submitted", "admission_offered"]
    assert [(e.from_status, e.to_status) for e in entries][-1] == ("applied", "admitted")


async def test_temporary_ids_are_sequential(workflow, db_session) -> None:
    first = await workflow.create_inquiry(db_session, aarav_inquiry())
    second = await workflow.create_inquiry(db_session, aarav_inquiry(first_name_en="Anaya"))
    assert (first.temporary_id, second.temporary_id) == ("SCH-INQ-2024-0001", "SCH-INQ-2024-0002")


# ----- Test and interview stages -----

async def test_test_and_interview_path(workflow, db_session, notifier) -> None:
    admission_id = await to_applied(workflow, db_session)
    test_date = datetime(2024, 4, 20, 9, 0)

    admission = await workflow.schedule_test(db_session, admission_id, ScheduleTestRequest(test_date=test_date))
    assert admission.status == AdmissionStatus.TEST_SCHEDULED.value
    assert admission.admission_test_date == test_date

    admission = await workflow.record_test_score(
        db_session, admission_id, RecordTestScoreRequest(score=78, max_score=100, remarks="Good")
    )
    assert admission.status == AdmissionStatus.TESTED.value
    assert admission.admission_test_score == 78

    admission = await workflow.schedule_interview(
        db_session,
        admission_id,
        ScheduleInterviewRequest(interview_date=datetime(2024, 4, 25, 11, 0), interviewer_name="Principal"),
    )
    assert admission.status == AdmissionStatus.INTERVIEW_SCHEDULED.value

    admission = await workflow.record_interview(
        db_session, admission_id, RecordInterviewRequest(feedback="Confident and curious", score=85)
    )
    assert admission.status == AdmissionStatus.INTERVIEWED.value
    assert admission.interview_score == 85
    assert "test_scheduled" in notifier.kinds()
    assert "interview_scheduled" in notifier.kinds()


async def test_record_test_score_requires_scheduled_test(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    with pytest.raises(IllegalTransition) as exc:
        await workflow.record_test_score(
            db_session, admission_id, RecordTestScoreRequest(score=50, max_score=100)
        )
    assert exc.value.message == "Cannot record test score for status: applied"


async def test_record_interview_requires_scheduled_interview(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    with pytest.raises(IllegalTransition) as exc:
        await workflow.record_interview(db_session, admission_id, RecordInterviewRequest(feedback="Fine"))
    assert exc.value.message == "Cannot record interview for status: applied"


async def test_score_above_max_is_rejected_before_any_change(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    await workflow.schedule_test(db_session, admission_id, ScheduleTestRequest(test_date=datetime(2024, 4, 20)))
    with pytest.raises(ValidationFailed) as exc:
        await workflow.record_test_score(
            db_session, admission_id, RecordTestScoreRequest(score=120, max_score=100)
        )
    assert exc.value.field == "score"
    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.TEST_SCHEDULED.value


async def test_interview_directly_from_applied_follows_policy(notifier, documents, db_session) -> None:
    strict = AdmissionWorkflowEngine(
        notifier,
        documents,
        config=settings,
        policy=TransitionPolicy(allow_interview_without_test=False),
        clock=lambda: datetime(2024, 4, 15),
    )
    admission_id = await to_applied(strict, db_session)
    with pytest.raises(IllegalTransition) as exc:
        await strict.schedule_interview(
            db_session, admission_id, ScheduleInterviewRequest(interview_date=datetime(2024, 4, 25))
        )
    assert exc.value.message == "Cannot schedule interview from status: applied"


async def test_interview_directly_from_applied_allowed_by_default(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    admission = await workflow.schedule_interview(
        db_session, admission_id, ScheduleInterviewRequest(interview_date=datetime(2024, 4, 25))
    )
    assert admission.status == AdmissionStatus.INTERVIEW_SCHEDULED.value


# ----- Reject / withdraw -----

async def test_reject_requires_reason(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    with pytest.raises(ValidationFailed):
        await workflow.reject(db_session, admission_id, "   ")
    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.APPLIED.value


async def test_reject_from_admitted(workflow, db_session, notifier) -> None:
    admission_id = await to_admitted(workflow, db_session)
    admission = await workflow.reject(db_session, admission_id, "Documents not verified")
    assert admission.status == AdmissionStatus.REJECTED.value
    assert admission.rejection_reason == "Documents not verified"
    assert admission.rejection_date is not None
    assert notifier.kinds()[-1] == "rejected"


async def test_terminal_records_are_immutable(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    await workflow.withdraw(db_session, admission_id, "Family relocated")

    with pytest.raises(IllegalTransition) as exc:
        await workflow.reject(db_session, admission_id, "Late")
    assert exc.value.message == "Cannot reject from status: withdrawn"
    with pytest.raises(IllegalTransition):
        await workflow.admit(db_session, admission_id)
    with pytest.raises(IllegalTransition):
        await workflow.withdraw(db_session, admission_id)

    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.WITHDRAWN.value
    assert admission.withdrawal_reason == "Family relocated"


async def test_unknown_admission(workflow, db_session) -> None:
    with pytest.raises(AdmissionNotFound):
        await workflow.admit(db_session, uuid4())
    with pytest.raises(AdmissionNotFound):
        await workflow.get_admission(db_session, uuid4())


# ----- Collaborators -----

async def test_admit_fails_without_offer_letter(workflow, db_session, documents) -> None:
    admission_id = await to_applied(workflow, db_session)
    documents.fail = True

    with pytest.raises(DependencyFailure) as exc:
        await workflow.admit(db_session, admission_id)
    assert exc.value.which == "document_generator"

    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.APPLIED.value
    assert admission.admission_date is None
    assert admission.admission_offer_letter_url is None


async def test_notification_failure_does_not_fail_transition(workflow, db_session, notifier) -> None:
    notifier.fail = True
    admission = await workflow.create_inquiry(db_session, aarav_inquiry())
    admission_id = admission.id
    admission = await workflow.convert_to_application(db_session, admission_id, ApplicationSubmit())
    assert admission.status == AdmissionStatus.APPLIED.value
    assert notifier.sent == []


async def test_no_notification_without_contact_phone(workflow, db_session, notifier) -> None:
    await workflow.create_inquiry(db_session, aarav_inquiry(guardian_phone=None))
    assert notifier.sent == []


async def test_deadline_rolls_back(workflow, db_session, documents, monkeypatch) -> None:
    admission_id = await to_applied(workflow, db_session)

    async def slow_letter(payload):
        await asyncio.sleep(5)
        return "https://docs.example.test/slow.pdf"

    monkeypatch.setattr(documents, "generate_offer_letter", slow_letter)
    with pytest.raises(DependencyFailure) as exc:
        await workflow.admit(db_session, admission_id, timeout=0.05)
    assert exc.value.which == "deadline"

    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.APPLIED.value


# ----- Enrollment atomicity -----

async def test_enrollment_rolls_back_when_provisioning_fails(workflow, db_session, monkeypatch) -> None:
    admission_id = await to_admitted(workflow, db_session)

    async def broken_provisioning(*args, **kwargs):
        raise RuntimeError("identity store unavailable")

    monkeypatch.setattr(
        "admission_engine.api.v1.admissions.enrollment.provision_enrollment_identities",
        broken_provisioning,
    )
    with pytest.raises(RuntimeError):
        await workflow.enroll(db_session, admission_id)

    admission = await workflow.get_admission(db_session, admission_id)
    assert admission.status == AdmissionStatus.ADMITTED.value
    assert admission.enrolled_student_id is None
    assert await count(db_session, Student) == 0
    assert await count(db_session, User) == 0

    monkeypatch.undo()
    result = await workflow.enroll(db_session, admission_id)
    # The rolled-back allocation is not consumed
    assert result.student.student_code == "SCH-2024-0001"


async def test_enrollment_without_guardian_contact_creates_student_login_only(workflow, db_session) -> None:
    admission_id = await new_admission(workflow, db_session, guardian_phone=None, guardian_name=None)
    await workflow.convert_to_application(db_session, admission_id, ApplicationSubmit())
    await workflow.admit(db_session, admission_id)

    result = await workflow.enroll(db_session, admission_id)
    assert result.credentials.parent is None
    assert await count(db_session, User) == 1


async def test_enroll_requires_admitted(workflow, db_session) -> None:
    admission_id = await to_applied(workflow, db_session)
    with pytest.raises(IllegalTransition) as exc:
        await workflow.enroll(db_session, admission_id)
    assert exc.value.message == "Cannot enroll from status: applied"
    assert await count(db_session, Student) == 0


async def test_provisioning_twice_creates_one_identity(db_session) -> None:
    student = Student(
        student_code="SCH-2024-0005",
        first_name_en="Aarav",
        last_name_en="Shah",
        admission_date=datetime(2024, 4, 15),
        admission_class=5,
    )
    db_session.add(student)
    await db_session.flush()

    kwargs = dict(
        student_code="SCH-2024-0005",
        student_id=student.id,
        student_name="Aarav Shah",
        student_email=None,
        guardian_name="Rajesh Shah",
        guardian_phone="9841234567",
        guardian_email=None,
    )
    first = await provision_enrollment_identities(db_session, **kwargs)
    second = await provision_enrollment_identities(db_session, **kwargs)
    await db_session.commit()

    assert first.student.created and first.student.temporary_password
    assert not second.student.created
    assert second.student.temporary_password is None
    assert not second.parent.created
    assert await count(db_session, User) == 2


async def test_concurrent_admit_succeeds_once(workflow, session_factory) -> None:
    async with session_factory() as db:
        admission_id = await to_applied(workflow, db)

    async def admit_once():
        async with session_factory() as db:
            return await workflow.admit(db, admission_id)

    results = await asyncio.gather(admit_once(), admit_once(), return_exceptions=True)
    admitted = [r for r in results if isinstance(r, Admission)]
    refused = [r for r in results if isinstance(r, IllegalTransition)]
    assert len(admitted) == 1
    assert len(refused) == 1


# ----- Queries -----

async def test_available_transitions(workflow, db_session) -> None:
    admission_id = await new_admission(workflow, db_session)
    _, targets = await workflow.available_transitions(db_session, admission_id)
    assert targets == [AdmissionStatus.APPLIED, AdmissionStatus.REJECTED, AdmissionStatus.WITHDRAWN]


async def test_list_admissions_filters(workflow, db_session) -> None:
    await to_applied(workflow, db_session)
    await workflow.create_inquiry(db_session, aarav_inquiry(first_name_en="Anaya", last_name_en="Karki", applying_for_class=3))

    items, total = await workflow.list_admissions(db_session)
    assert total == 2

    items, total = await workflow.list_admissions(db_session, status_filter=AdmissionStatus.APPLIED)
    assert total == 1 and items[0].first_name_en == "Aarav"

    items, total = await workflow.list_admissions(db_session, search="karki")
    assert [a.first_name_en for a in items] == ["Anaya"]

    items, total = await workflow.list_admissions(db_session, applying_for_class=3, limit=1000)
    assert total == 1


async def test_student_code_summary(workflow, db_session) -> None:
    summary = await workflow.student_code_summary(db_session, 2024)
    assert summary == {"year": 2024, "issued": 0, "next_sequence": 1, "next_code": "SCH-2024-0001", "exhausted": False}

    admission_id = await to_admitted(workflow, db_session)
    await workflow.enroll(db_session, admission_id)
    summary = await workflow.student_code_summary(db_session, 2024)
    assert summary["issued"] == 1
    assert summary["next_code"] == "SCH-2024-0002"


async def test_student_code_summary_for_an_exhausted_year(workflow, db_session) -> None:
    db_session.add(CodeSequence(prefix="SCH", segment="", year=2024, last_value=MAX_SEQUENCE))
    await db_session.commit()

    summary = await workflow.student_code_summary(db_session, 2024)
    assert summary["next_sequence"] is None
    assert summary["next_code"] is None
    assert summary["exhausted"] is True


# ----- Retries -----

async def test_offer_letter_rendered_once_across_a_storage_retry(workflow, db_session, documents, monkeypatch) -> None:
    admission_id = await to_applied(workflow, db_session)
    real_commit = db_session.commit
    conflicts = []

    async def commit_with_one_conflict():
        if not conflicts:
            conflicts.append(True)
            raise StaleDataError("concurrent update")
        await real_commit()

    monkeypatch.setattr(db_session, "commit", commit_with_one_conflict)
    admission = await workflow.admit(db_session, admission_id)

    assert conflicts == [True]
    assert admission.status == AdmissionStatus.ADMITTED.value
    assert len(documents.calls) == 1
    assert admission.admission_offer_letter_url


# ----- Every disallowed move leaves the record untouched -----

OPERATIONS = {
    "apply": (AdmissionStatus.APPLIED, lambda wf, db, aid: wf.convert_to_application(db, aid, ApplicationSubmit())),
    "schedule_test": (
        AdmissionStatus.TEST_SCHEDULED,
        lambda wf, db, aid: wf.schedule_test(db, aid, ScheduleTestRequest(test_date=datetime(2024, 4, 20, 9, 0))),
    ),
    "record_test_score": (
        AdmissionStatus.TESTED,
        lambda wf, db, aid: wf.record_test_score(db, aid, RecordTestScoreRequest(score=70, max_score=100)),
    ),
    "schedule_interview": (
        AdmissionStatus.INTERVIEW_SCHEDULED,
        lambda wf, db, aid: wf.schedule_interview(
            db, aid, ScheduleInterviewRequest(interview_date=datetime(2024, 4, 25, 11, 0))
        ),
    ),
    "record_interview": (
        AdmissionStatus.INTERVIEWED,
        lambda wf, db, aid: wf.record_interview(db, aid, RecordInterviewRequest(feedback="Well prepared")),
    ),
    "admit": (AdmissionStatus.ADMITTED, lambda wf, db, aid: wf.admit(db, aid)),
    "enroll": (AdmissionStatus.ENROLLED, lambda wf, db, aid: wf.enroll(db, aid)),
    "reject": (AdmissionStatus.REJECTED, lambda wf, db, aid: wf.reject(db, aid, "Seats full")),
    "withdraw": (AdmissionStatus.WITHDRAWN, lambda wf, db, aid: wf.withdraw(db, aid, "Moved away")),
}

PATHS = {
    AdmissionStatus.INQUIRY: [],
    AdmissionStatus.APPLIED: ["apply"],
    AdmissionStatus.TEST_SCHEDULED: ["apply", "schedule_test"],
    AdmissionStatus.TESTED: ["apply", "schedule_test", "record_test_score"],
    AdmissionStatus.INTERVIEW_SCHEDULED: ["apply", "schedule_interview"],
    AdmissionStatus.INTERVIEWED: ["apply", "schedule_interview", "record_interview"],
    AdmissionStatus.ADMITTED: ["apply", "admit"],
    AdmissionStatus.ENROLLED: ["apply", "admit", "enroll"],
    AdmissionStatus.REJECTED: ["reject"],
    AdmissionStatus.WITHDRAWN: ["withdraw"],
}

DISALLOWED = [
    (source, name)
    for source in AdmissionStatus
    for name, (target, _) in OPERATIONS.items()
    if not DEFAULT_POLICY.can_transition(source, target)
]

DATE_FIELDS = [c.name for c in Admission.__table__.columns if c.name.endswith("_date")]


async def drive_to(workflow, db, status: AdmissionStatus):
    admission_id = await new_admission(workflow, db)
    for name in PATHS[status]:
        await OPERATIONS[name][1](workflow, db, admission_id)
    return admission_id


async def snapshot(workflow, db, admission_id) -> dict:
    admission = await workflow.get_admission(db, admission_id)
    state = {name: getattr(admission, name) for name in DATE_FIELDS}
    state.update(status=admission.status, version=admission.version)
    return state


@pytest.mark.parametrize(
    "source,operation",
    DISALLOWED,
    ids=[f"{source.value}-{name}" for source, name in DISALLOWED],
)
async def test_disallowed_operation_changes_nothing(workflow, db_session, source, operation) -> None:
    admission_id = await drive_to(workflow, db_session, source)
    before = await snapshot(workflow, db_session, admission_id)
    assert before["status"] == source.value
    students = await count(db_session, Student)
    audit_entries = len(await audit_service.list_audit(db_session, admission_id))

    with pytest.raises(IllegalTransition):
        await OPERATIONS[operation][1](workflow, db_session, admission_id)

    assert await snapshot(workflow, db_session, admission_id) == before
    assert await count(db_session, Student) == students
    assert len(await audit_service.list_audit(db_session, admission_id)) == audit_entries


def test_every_status_has_disallowed_operations() -> None:
    assert {source for source, _ in DISALLOWED} == set(AdmissionStatus)


async def test_concurrent_inquiries_get_distinct_temporary_ids(workflow, session_factory) -> None:
    async def create_one() -> str:
        async with session_factory() as db:
            admission = await workflow.create_inquiry(db, aarav_inquiry())
            return admission.temporary_id

    temporary_ids = await asyncio.gather(*[create_one() for _ in range(50)])

    assert sorted(temporary_ids) == [f"SCH-INQ-2024-{n:04d}" for n in range(1, 51)]
