"""
Login identity provisioning for enrolled students and their parents.

Creation is existence-checked by username: provisioning the same student code
twice creates one identity and never regenerates its credentials.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from admission_engine.auth.credentials import generate_temporary_password, parent_username, student_username
from admission_engine.auth.models import User
from admission_engine.auth.security import hash_password
from admission_engine.core.enums import IdentityRole
from admission_engine.core.exceptions import IdentityConflict
from admission_engine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProvisionedIdentity:
    username: str
    role: str
    # Plaintext, returned once; None when the identity already existed
    temporary_password: Optional[str]
    created: bool


@dataclass
class EnrollmentCredentials:
    student: ProvisionedIdentity
    parent: Optional[ProvisionedIdentity] = None


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def provision_identity(
    db: AsyncSession,
    *,
    username: str,
    role: IdentityRole,
    full_name: str,
    email: Optional[str] = None,
    mobile: Optional[str] = None,
    student_id: Optional[UUID] = None,
) -> ProvisionedIdentity:
    """Create the login identity unless one with this username exists. Does not commit."""
    existing = await get_user_by_username(db, username)
    if existing:
        logger.info("Login account already exists", username=username, role=role.value)
        return ProvisionedIdentity(username=username, role=role.value, temporary_password=None, created=False)

    password = generate_temporary_password()
    user = User(
        username=username,
        full_name=full_name,
        email=email,
        mobile=mobile,
        password_hash=hash_password(password),
        role=role.value,
        status="ACTIVE",
        source="ENROLLMENT",
        student_id=student_id,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # Another transaction created the same username between the check and the insert
        raise IdentityConflict(username)
    logger.info("Login account created", username=username, role=role.value)
    return ProvisionedIdentity(username=username, role=role.value, temporary_password=password, created=True)


async def provision_enrollment_identities(
    db: AsyncSession,
    *,
    student_code: str,
    student_id: UUID,
    student_name: str,
    student_email: Optional[str],
    guardian_name: Optional[str],
    guardian_phone: Optional[str],
    guardian_email: Optional[str],
) -> EnrollmentCredentials:
    """
    Student identity always; parent identity only when a guardian phone or email is known.
    The two are checked independently, so a half-provisioned pair is completed on retry.
    """
    student = await provision_identity(
        db,
        username=student_username(student_code),
        role=IdentityRole.STUDENT,
        full_name=student_name,
        email=student_email,
        student_id=student_id,
    )
    parent = None
    if guardian_phone or guardian_email:
        parent = await provision_identity(
            db,
            username=parent_username(student_code),
            role=IdentityRole.PARENT,
            full_name=guardian_name or f"Parent of {student_name}",
            email=guardian_email,
            mobile=guardian_phone,
            student_id=student_id,
        )
    return EnrollmentCredentials(student=student, parent=parent)
