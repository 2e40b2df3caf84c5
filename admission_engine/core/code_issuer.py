"""
Sequential, year-scoped codes.

Student codes:   <PREFIX>-<YEAR>-<SEQ4>       e.g. SCH-2024-0001
Temporary ids:   <PREFIX>-INQ-<YEAR>-<SEQ4>   e.g. SCH-INQ-2024-0001

Issuance runs inside the caller's transaction and always takes the scope's row
lock (SELECT ... FOR UPDATE on code_sequences), whether the caller or the issuer
began the transaction. The issuer never commits; the caller persists the entity
carrying the code and commits, which releases the lock. Values are never reused.
"""

import re
from dataclasses import dataclass
from typing import NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from admission_engine.core.config import settings
from admission_engine.core.exceptions import CodeAllocationExhausted
from admission_engine.core.logging import get_logger
from admission_engine.core.models import Admission, CodeSequence, Student

logger = get_logger(__name__)

SEQUENCE_WIDTH = 4
MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1
INQUIRY_SEGMENT = "INQ"

# Whole-string matches over ASCII digits only
STUDENT_CODE_RE = re.compile(r"([A-Z0-9]+)-([0-9]{4})-([0-9]{4})")
TEMPORARY_ID_RE = re.compile(r"([A-Z0-9]+)-INQ-([0-9]{4})-([0-9]{4})")


class ParsedCode(NamedTuple):
    prefix: str
    year: int
    sequence: int


@dataclass(frozen=True)
class CodeScope:
    """Key under which one counter is maintained: (prefix, year) or (prefix, INQ, year)."""

    prefix: str
    year: int
    segment: str = ""

    @property
    def stem(self) -> str:
        if self.segment:
            return f"{self.prefix}-{self.segment}-{self.year}-"
        return f"{self.prefix}-{self.year}-"

    def render(self, sequence: int) -> str:
        if sequence < 1 or sequence > MAX_SEQUENCE:
            raise CodeAllocationExhausted(str(self))
        return f"{self.stem}{sequence:0{SEQUENCE_WIDTH}d}"

    def __str__(self) -> str:
        return self.stem[:-1]


def student_code_scope(year: int, prefix: Optional[str] = None) -> CodeScope:
    return CodeScope(prefix=prefix or settings.school_code, year=year)


def temporary_id_scope(year: int, prefix: Optional[str] = None) -> CodeScope:
    return CodeScope(prefix=prefix or settings.school_code, year=year, segment=INQUIRY_SEGMENT)


def _source_column(scope: CodeScope):
    """Column holding codes already issued in this scope (used to seed a new counter)."""
    return Admission.temporary_id if scope.segment == INQUIRY_SEGMENT else Student.student_code


def _parse_sequence(scope: CodeScope, code: Optional[str]) -> int:
    if not code:
        return 0
    parsed = parse_temporary_id(code) if scope.segment == INQUIRY_SEGMENT else parse_student_code(code)
    if parsed is None or parsed.prefix != scope.prefix or parsed.year != scope.year:
        return 0
    return parsed.sequence


async def _highest_existing(db: AsyncSession, scope: CodeScope) -> int:
    column = _source_column(scope)
    # Zero-padded fixed width, so the lexicographic max is the numeric max
    result = await db.execute(select(func.max(column)).where(column.like(f"{scope.stem}%")))
    return _parse_sequence(scope, result.scalar())


def _insert_ignore(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(CodeSequence).on_conflict_do_nothing(
            index_elements=["prefix", "segment", "year"]
        )
    if dialect == "sqlite":
        return sqlite.insert(CodeSequence).on_conflict_do_nothing(
            index_elements=["prefix", "segment", "year"]
        )
    if dialect in ("mysql", "mariadb"):
        return mysql.insert(CodeSequence).prefix_with("IGNORE")
    raise NotImplementedError(f"Code issuance is not supported on dialect {dialect}")


async def _ensure_scope_row(db: AsyncSession, scope: CodeScope) -> None:
    """Create the counter row if missing, seeded from codes already stored for the scope."""
    existing = await db.execute(
        select(CodeSequence.id).where(
            CodeSequence.prefix == scope.prefix,
            CodeSequence.segment == scope.segment,
            CodeSequence.year == scope.year,
        )
    )
    seed = 0 if existing.scalar_one_or_none() is not None else await _highest_existing(db, scope)
    # Always executed: on SQLite this write statement is what takes the database write lock
    await db.execute(
        _insert_ignore(db).values(
            prefix=scope.prefix,
            segment=scope.segment,
            year=scope.year,
            last_value=seed,
        )
    )


async def issue_code(db: AsyncSession, scope: CodeScope) -> str:
    """
    Reserve and return the next code in scope. Caller must persist the entity and commit.

    Raises CodeAllocationExhausted when the scope has passed 9999.
    """
    await _ensure_scope_row(db, scope)
    result = await db.execute(
        select(CodeSequence)
        .where(
            CodeSequence.prefix == scope.prefix,
            CodeSequence.segment == scope.segment,
            CodeSequence.year == scope.year,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one()
    next_value = row.last_value + 1
    if next_value > MAX_SEQUENCE:
        logger.error("Code sequence exhausted", scope=str(scope))
        raise CodeAllocationExhausted(str(scope))
    row.last_value = next_value
    await db.flush()
    code = scope.render(next_value)
    logger.debug("Code issued", scope=str(scope), code=code)
    return code


async def issue_student_code(db: AsyncSession, year: int, prefix: Optional[str] = None) -> str:
    return await issue_code(db, student_code_scope(year, prefix))


async def issue_temporary_id(db: AsyncSession, year: int, prefix: Optional[str] = None) -> str:
    return await issue_code(db, temporary_id_scope(year, prefix))


# ----- Query surface -----

def parse_student_code(code: str) -> Optional[ParsedCode]:
    """Split SCH001-2024-0001 into (prefix, year, sequence); None if the shape is wrong."""
    match = STUDENT_CODE_RE.fullmatch(code or "")
    if not match:
        return None
    return ParsedCode(match.group(1), int(match.group(2)), int(match.group(3)))


def parse_temporary_id(code: str) -> Optional[ParsedCode]:
    match = TEMPORARY_ID_RE.fullmatch(code or "")
    if not match:
        return None
    return ParsedCode(match.group(1), int(match.group(2)), int(match.group(3)))


def validate_student_code_format(code: str) -> bool:
    return parse_student_code(code) is not None


def format_student_code(parsed: ParsedCode) -> str:
    return CodeScope(prefix=parsed.prefix, year=parsed.year).render(parsed.sequence)


async def count_issued(db: AsyncSession, year: int, prefix: Optional[str] = None) -> int:
    """Number of students holding a code in the year's scope."""
    scope = student_code_scope(year, prefix)
    result = await db.execute(
        select(func.count(Student.id)).where(Student.student_code.like(f"{scope.stem}%"))
    )
    return result.scalar() or 0


async def peek_next(db: AsyncSession, year: int, prefix: Optional[str] = None) -> int:
    """
    Next sequence number for display only. Takes no lock; never use it to allocate.
    """
    scope = student_code_scope(year, prefix)
    result = await db.execute(
        select(CodeSequence.last_value).where(
            CodeSequence.prefix == scope.prefix,
            CodeSequence.segment == scope.segment,
            CodeSequence.year == scope.year,
        )
    )
    last_value = result.scalar_one_or_none()
    if last_value is None:
        last_value = await _highest_existing(db, scope)
    return last_value + 1
