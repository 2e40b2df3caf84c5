"""
Login credentials for identities provisioned at enrollment.
Usernames are derived from the student code; temporary passwords are random.
"""

import secrets
from typing import List, MutableSequence

# Visually confusable characters (0/O, 1/l/I) are left out
UPPERCASE = "ABCDEFGHJKLMNPQRSTUVWXYZ"
LOWERCASE = "abcdefghjkmnpqrstuvwxyz"
DIGITS = "23456789"
SYMBOLS = "@#$!"

TEMPORARY_PASSWORD_LENGTH = 8

PARENT_USERNAME_PREFIX = "parent."


def student_username(student_code: str) -> str:
    """
    Username for a student's login, derived from the student code.

    Examples:
        SCH-2024-0001 -> sch.2024.0001
        ABC1-2023-0420 -> abc1.2023.0420
    """
    return student_code.strip().lower().replace("-", ".").replace("_", ".")


def parent_username(student_code: str) -> str:
    return PARENT_USERNAME_PREFIX + student_username(student_code)


def secure_shuffle(items: MutableSequence) -> None:
    """Fisher-Yates shuffle in place, driven by the secrets CSPRNG."""
    for i in range(len(items) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        items[i], items[j] = items[j], items[i]


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """
    Temporary password with at least one uppercase, lowercase, digit and symbol.

    The four required characters are placed at random positions; the rest are drawn
    from letters and digits. Production-safe: uses secrets for every draw.
    """
    if length < 4:
        raise ValueError("Temporary password length must be at least 4")
    chars: List[str] = [
        secrets.choice(UPPERCASE),
        secrets.choice(LOWERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    filler = UPPERCASE + LOWERCASE + DIGITS
    chars.extend(secrets.choice(filler) for _ in range(length - 4))
    secure_shuffle(chars)
    return "".join(chars)
