from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from admission_engine.auth.dependencies import get_current_user
from admission_engine.auth.rbac import check_permission
from admission_engine.auth.schemas import CurrentUser
from admission_engine.auth.services import ProvisionedIdentity
from admission_engine.core.enums import AdmissionStatus
from admission_engine.core.exceptions import ServiceError
from admission_engine.db.session import get_db

from .dependencies import get_admission_engine
from .schemas import (
    AdmissionListResponse,
    AdmissionResponse,
    ApplicationSubmit,
    AvailableTransitionsResponse,
    CredentialResponse,
    EnrollmentResponse,
    EnrollRequest,
    InquiryCreate,
    RecordInterviewRequest,
    RecordTestScoreRequest,
    RejectRequest,
    ScheduleInterviewRequest,
    ScheduleTestRequest,
    StudentCodeSummary,
    StudentResponse,
    WithdrawRequest,
)
from .service import AdmissionWorkflowEngine

router = APIRouter(prefix="/api/v1/admissions", tags=["admissions"])


def _credential(identity: Optional[ProvisionedIdentity]) -> Optional[CredentialResponse]:
    if identity is None:
        return None
    return CredentialResponse(
        username=identity.username,
        role=identity.role,
        temporary_password=identity.temporary_password,
        created=identity.created,
    )


# ----- Inquiry -----

@router.post(
    "/inquiries",
    response_model=AdmissionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("admissions", "create"))],
)
async def create_inquiry(
    payload: InquiryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    """Record an inquiry. The temporary id (SCH-INQ-2024-0001) is issued by the backend."""
    try:
        return await engine.create_inquiry(
            db, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Queries -----

@router.get(
    "",
    response_model=AdmissionListResponse,
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def list_admissions(
    status_filter: Optional[AdmissionStatus] = Query(None, alias="status"),
    applying_for_class: Optional[int] = Query(None, ge=1, le=12),
    academic_year_id: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, description="Matches names and temporary id"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionListResponse:
    items, total = await engine.list_admissions(
        db,
        status_filter=status_filter,
        applying_for_class=applying_for_class,
        academic_year_id=academic_year_id,
        search=search,
        limit=limit,
        offset=offset,
    )
    return AdmissionListResponse(
        items=[AdmissionResponse.model_validate(a) for a in items],
        total=total,
    )


@router.get(
    "/student-codes/{year}/summary",
    response_model=StudentCodeSummary,
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def student_code_summary(
    year: int,
    db: AsyncSession = Depends(get_db),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> StudentCodeSummary:
    """Issued count and next code for the year. Display only, nothing is reserved."""
    try:
        return StudentCodeSummary(**await engine.student_code_summary(db, year))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{admission_id}",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def get_admission(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.get_admission(db, admission_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{admission_id}/transitions",
    response_model=AvailableTransitionsResponse,
    dependencies=[Depends(check_permission("admissions", "read"))],
)
async def available_transitions(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AvailableTransitionsResponse:
    """Statuses the admission can move to next. Empty for enrolled/rejected/withdrawn."""
    try:
        admission, targets = await engine.available_transitions(db, admission_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return AvailableTransitionsResponse(
        admission_id=admission.id,
        status=admission.status_enum,
        available=targets,
    )


# ----- Transitions -----

@router.post(
    "/{admission_id}/apply",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def convert_to_application(
    admission_id: UUID,
    payload: ApplicationSubmit,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.convert_to_application(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/schedule-test",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def schedule_test(
    admission_id: UUID,
    payload: ScheduleTestRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.schedule_test(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/record-test-score",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def record_test_score(
    admission_id: UUID,
    payload: RecordTestScoreRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.record_test_score(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/schedule-interview",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def schedule_interview(
    admission_id: UUID,
    payload: ScheduleInterviewRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.schedule_interview(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/record-interview",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def record_interview(
    admission_id: UUID,
    payload: RecordInterviewRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.record_interview(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/admit",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def admit(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    """Admit and generate the offer letter. 503 (status unchanged) if the letter cannot be produced."""
    try:
        return await engine.admit(
            db, admission_id, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/enroll",
    response_model=EnrollmentResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def enroll(
    admission_id: UUID,
    payload: Optional[EnrollRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> EnrollmentResponse:
    """Create the student, issue the student code and provision student/parent logins."""
    try:
        result = await engine.enroll(
            db, admission_id, payload, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return EnrollmentResponse(
        admission=AdmissionResponse.model_validate(result.admission),
        student=StudentResponse.model_validate(result.student),
        student_credentials=_credential(result.credentials.student),
        parent_credentials=_credential(result.credentials.parent),
    )


@router.post(
    "/{admission_id}/reject",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def reject(
    admission_id: UUID,
    payload: RejectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.reject(
            db, admission_id, payload.reason, actor_id=current_user.id, actor_role=current_user.role
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{admission_id}/withdraw",
    response_model=AdmissionResponse,
    dependencies=[Depends(check_permission("admissions", "update"))],
)
async def withdraw(
    admission_id: UUID,
    payload: Optional[WithdrawRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    engine: AdmissionWorkflowEngine = Depends(get_admission_engine),
) -> AdmissionResponse:
    try:
        return await engine.withdraw(
            db,
            admission_id,
            payload.reason if payload else None,
            actor_id=current_user.id,
            actor_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
