"""
Admission state machine as an explicit adjacency table.

    inquiry -> applied
    applied -> test_scheduled | interview_scheduled | admitted
    test_scheduled -> tested
    tested -> interview_scheduled | admitted
    interview_scheduled -> interviewed
    interviewed -> admitted
    admitted -> enrolled
    any non-terminal -> rejected | withdrawn

Terminal statuses have no outgoing edges.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, Tuple

from admission_engine.core.enums import AdmissionStatus as S


TERMINAL_STATUSES: FrozenSet[S] = frozenset({S.ENROLLED, S.REJECTED, S.WITHDRAWN})

_FORWARD: Dict[S, FrozenSet[S]] = {
    S.INQUIRY: frozenset({S.APPLIED}),
    S.APPLIED: frozenset({S.TEST_SCHEDULED, S.INTERVIEW_SCHEDULED, S.ADMITTED}),
    S.TEST_SCHEDULED: frozenset({S.TESTED}),
    S.TESTED: frozenset({S.INTERVIEW_SCHEDULED, S.ADMITTED}),
    S.INTERVIEW_SCHEDULED: frozenset({S.INTERVIEWED}),
    S.INTERVIEWED: frozenset({S.ADMITTED}),
    S.ADMITTED: frozenset({S.ENROLLED}),
    S.ENROLLED: frozenset(),
    S.REJECTED: frozenset(),
    S.WITHDRAWN: frozenset(),
}

TRANSITIONS: Dict[S, FrozenSet[S]] = {
    status: targets | (frozenset() if status in TERMINAL_STATUSES else frozenset({S.REJECTED, S.WITHDRAWN}))
    for status, targets in _FORWARD.items()
}


@dataclass(frozen=True)
class TransitionPolicy:
    """
    Business-rule switches over the base graph.

    allow_interview_without_test: keep the applied -> interview_scheduled edge.
    When False an applicant must be tested before an interview can be scheduled.
    """

    allow_interview_without_test: bool = True

    def targets(self, current: S) -> FrozenSet[S]:
        targets = TRANSITIONS[current]
        if current == S.APPLIED and not self.allow_interview_without_test:
            targets = targets - {S.INTERVIEW_SCHEDULED}
        return targets

    def can_transition(self, current: S, target: S) -> bool:
        return target in self.targets(current)

    def edges(self) -> Iterator[Tuple[S, S]]:
        for source in S:
            for target in sorted(self.targets(source), key=lambda s: s.value):
                yield source, target


DEFAULT_POLICY = TransitionPolicy()


def is_terminal(status: S) -> bool:
    return status in TERMINAL_STATUSES
