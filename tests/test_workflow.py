"""Transition table tests."""

import pytest

from admission_engine.core.enums import AdmissionStatus as S
from admission_engine.core.workflow import (
    DEFAULT_POLICY,
    TERMINAL_STATUSES,
    TRANSITIONS,
    TransitionPolicy,
    is_terminal,
)


EXPECTED_EDGES = {
    (S.INQUIRY, S.APPLIED),
    (S.APPLIED, S.TEST_SCHEDULED),
    (S.APPLIED, S.INTERVIEW_SCHEDULED),
    (S.APPLIED, S.ADMITTED),
    (S.TEST_SCHEDULED, S.TESTED),
    (S.TESTED, S.INTERVIEW_SCHEDULED),
    (S.TESTED, S.ADMITTED),
    (S.INTERVIEW_SCHEDULED, S.INTERVIEWED),
    (S.INTERVIEWED, S.ADMITTED),
    (S.ADMITTED, S.ENROLLED),
}
for _source in S:
    if _source not in (S.ENROLLED, S.REJECTED, S.WITHDRAWN):
        EXPECTED_EDGES.add((_source, S.REJECTED))
        EXPECTED_EDGES.add((_source, S.WITHDRAWN))


def test_every_status_has_an_entry() -> None:
    assert set(TRANSITIONS) == set(S)


def test_edges_enumerate_the_whole_graph() -> None:
    assert set(DEFAULT_POLICY.edges()) == EXPECTED_EDGES


@pytest.mark.parametrize("source", list(S))
@pytest.mark.parametrize("target", list(S))
def test_every_pair_matches_the_table(source: S, target: S) -> None:
    assert DEFAULT_POLICY.can_transition(source, target) == ((source, target) in EXPECTED_EDGES)


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_statuses_have_no_exits(status: S) -> None:
    assert is_terminal(status)
    assert DEFAULT_POLICY.targets(status) == frozenset()


def test_no_self_loops() -> None:
    for status in S:
        assert not DEFAULT_POLICY.can_transition(status, status)


def test_admitted_can_still_be_rejected() -> None:
    assert DEFAULT_POLICY.can_transition(S.ADMITTED, S.REJECTED)


def test_enrolled_cannot_be_rejected_or_withdrawn() -> None:
    assert not DEFAULT_POLICY.can_transition(S.ENROLLED, S.REJECTED)
    assert not DEFAULT_POLICY.can_transition(S.ENROLLED, S.WITHDRAWN)


def test_policy_can_require_test_before_interview() -> None:
    strict = TransitionPolicy(allow_interview_without_test=False)
    assert not strict.can_transition(S.APPLIED, S.INTERVIEW_SCHEDULED)
    assert strict.can_transition(S.TESTED, S.INTERVIEW_SCHEDULED)
    assert set(strict.edges()) == EXPECTED_EDGES - {(S.APPLIED, S.INTERVIEW_SCHEDULED)}
