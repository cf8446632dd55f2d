"""Assignment balancer: choose an officer from candidates by current workload."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from case_engine.errors import NoEligibleOfficers


@dataclass(frozen=True)
class Candidate:
    officer_id: str
    workload: int


Strategy = Callable[[Sequence[Candidate]], Candidate]


def least_loaded(candidates: Sequence[Candidate]) -> Candidate:
    """Lowest workload first; ties go to the smallest officer id."""
    return min(candidates, key=lambda c: (c.workload, c.officer_id))


STRATEGIES: dict[str, Strategy] = {"least_loaded": least_loaded}


def select_assignee(
    candidates: Iterable[Candidate],
    strategy: Strategy | str = least_loaded,
    max_workload: int | None = None,
) -> str:
    """Return the officer id picked by strategy.

    Candidates whose workload is at or above max_workload are not eligible.
    Raises NoEligibleOfficers when nothing is left to choose from.
    """
    pool = list(candidates)
    if not pool:
        raise NoEligibleOfficers("No candidate officers supplied")
    if max_workload is not None:
        pool = [c for c in pool if c.workload < max_workload]
        if not pool:
            raise NoEligibleOfficers(
                f"All candidate officers are at or above the workload cap ({max_workload})",
                max_workload=max_workload,
            )
    if isinstance(strategy, str):
        try:
            strategy = STRATEGIES[strategy]
        except KeyError as e:
            raise ValueError(
                f"Unknown assignment strategy {strategy!r}. Known: {sorted(STRATEGIES)}"
            ) from e
    return strategy(pool).officer_id
