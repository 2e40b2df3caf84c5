"""Unit tests for enrollment login credentials."""

from collections import Counter

import pytest

from admission_engine.auth.credentials import (
    DIGITS,
    LOWERCASE,
    SYMBOLS,
    UPPERCASE,
    generate_temporary_password,
    parent_username,
    secure_shuffle,
    student_username,
)


def test_student_username_from_code() -> None:
    assert student_username("SCH-2024-0001") == "sch.2024.0001"
    assert student_username("ABC1-2023-0420") == "abc1.2023.0420"


def test_parent_username_prefixed() -> None:
    assert parent_username("SCH-2024-0001") == "parent.sch.2024.0001"


def test_password_length_and_composition() -> None:
    for _ in range(200):
        password = generate_temporary_password()
        assert len(password) == 8
        assert any(c in UPPERCASE for c in password)
        assert any(c in LOWERCASE for c in password)
        assert any(c in DIGITS for c in password)
        assert any(c in SYMBOLS for c in password)


def test_password_uses_only_unambiguous_characters() -> None:
    allowed = set(UPPERCASE + LOWERCASE + DIGITS + SYMBOLS)
    for _ in range(200):
        assert set(generate_temporary_password()) <= allowed
    for confusable in "0O1lI":
        assert confusable not in allowed


def test_password_longer_length() -> None:
    assert len(generate_temporary_password(12)) == 12


def test_password_too_short_rejected() -> None:
    with pytest.raises(ValueError):
        generate_temporary_password(3)


def test_passwords_differ() -> None:
    passwords = {generate_temporary_password() for _ in range(100)}
    assert len(passwords) > 95


def test_symbol_position_varies() -> None:
    """Required characters are shuffled, not left at fixed positions."""
    positions = Counter()
    for _ in range(400):
        password = generate_temporary_password()
        positions.update(i for i, c in enumerate(password) if c in SYMBOLS)
    assert len(positions) == 8


def test_secure_shuffle_keeps_elements() -> None:
    items = list(range(20))
    secure_shuffle(items)
    assert sorted(items) == list(range(20))


def test_secure_shuffle_handles_trivial_inputs() -> None:
    empty: list = []
    secure_shuffle(empty)
    assert empty == []
    single = ["x"]
    secure_shuffle(single)
    assert single == ["x"]
