"""Case type registry: status sets, edge tables and verification requirements per case type.

All eight case types are declared here as data. Adding a case type means adding a
definition below; no control flow elsewhere changes.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from case_engine.errors import InvalidPriority, InvalidStatus, UnknownCaseType


class CaseType(StrEnum):
    GRIEVANCE = "GRIEVANCE"
    DISPUTE = "DISPUTE"
    TEMPLE_LETTER = "TEMPLE_LETTER"
    CM_RELIEF = "CM_RELIEF"
    EDUCATION = "EDUCATION"
    APPOINTMENT = "APPOINTMENT"
    CSR_INDUSTRIAL = "CSR_INDUSTRIAL"
    PROGRAM = "PROGRAM"


class ActorRole(StrEnum):
    CITIZEN = "L3_CITIZEN"
    EXECUTIVE = "L2_EXEC_ADMIN"
    MASTER_ADMIN = "L1_MASTER_ADMIN"


ROLE_RANK: Mapping[ActorRole, int] = MappingProxyType(
    {ActorRole.CITIZEN: 0, ActorRole.EXECUTIVE: 1, ActorRole.MASTER_ADMIN: 2}
)


def parse_role(role: str | ActorRole) -> ActorRole:
    """Return the ActorRole for a role string. Raises ValueError for unknown roles."""
    return ActorRole(role)


def role_at_least(role: str | ActorRole, minimum: ActorRole) -> bool:
    return ROLE_RANK[parse_role(role)] >= ROLE_RANK[minimum]


# Priority vocabularies. Rank 1 is the most urgent.
P_PRIORITIES: tuple[str, ...] = ("P1", "P2", "P3", "P4")
LABEL_PRIORITIES: tuple[str, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW")
PRIORITY_RANK: Mapping[str, int] = MappingProxyType(
    {
        **{p: i for i, p in enumerate(P_PRIORITIES, start=1)},
        **{p: i for i, p in enumerate(LABEL_PRIORITIES, start=1)},
    }
)

# Statuses that finalize a funds disbursement or an official letter.
VERIFICATION_GATED_STATUSES = frozenset({"APPROVED", "LETTER_ISSUED", "AMOUNT_DISBURSED", "COMPLETED"})


@dataclass(frozen=True)
class CaseTypeDefinition:
    """Static lifecycle definition for one case type."""

    case_type: CaseType
    id_prefix: str
    initial_status: str
    valid_statuses: frozenset[str]
    terminal_statuses: frozenset[str]
    edges: Mapping[str, Mapping[str, ActorRole]]
    abort_statuses: frozenset[str] = frozenset()
    requires_two_stage_verification: bool = False
    assignment_entry_status: str | None = None
    verification_entry_status: str | None = None
    priority_values: tuple[str, ...] = P_PRIORITIES
    default_priority: str = "P3"
    gated_statuses: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        gated = (
            VERIFICATION_GATED_STATUSES & self.valid_statuses
            if self.requires_two_stage_verification
            else frozenset()
        )
        object.__setattr__(self, "gated_statuses", gated)

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_statuses

    def allowed_targets(self, from_status: str) -> dict[str, ActorRole]:
        """Return {to_status: minimum role} for every edge leaving from_status."""
        if from_status in self.terminal_statuses:
            return {}
        targets = dict(self.edges.get(from_status, {}))
        for status in self.abort_statuses:
            if status != from_status:
                targets.setdefault(status, ActorRole.EXECUTIVE)
        return targets

    def check_status(self, status: str) -> None:
        if status not in self.valid_statuses:
            raise InvalidStatus(
                f"Status {status!r} is not valid for {self.case_type}. "
                f"Valid: {sorted(self.valid_statuses)}",
                case_type=str(self.case_type),
                status=status,
            )

    def check_priority(self, priority: str) -> None:
        if priority not in self.priority_values:
            raise InvalidPriority(
                f"Priority {priority!r} is not valid for {self.case_type}. "
                f"Valid: {list(self.priority_values)}",
                case_type=str(self.case_type),
                priority=priority,
            )

    def summary(self) -> dict[str, object]:
        return {
            "case_type": str(self.case_type),
            "id_prefix": self.id_prefix,
            "initial_status": self.initial_status,
            "valid_statuses": sorted(self.valid_statuses),
            "terminal_statuses": sorted(self.terminal_statuses),
            "requires_two_stage_verification": self.requires_two_stage_verification,
            "priority_values": list(self.priority_values),
            "edges": {
                s: {t: str(r) for t, r in sorted(self.allowed_targets(s).items())}
                for s in sorted(self.valid_statuses - self.terminal_statuses)
            },
        }


def _define(
    case_type: CaseType,
    id_prefix: str,
    initial_status: str,
    edges: Iterable[tuple[str, str]],
    terminal: Iterable[str],
    abort: Iterable[str] = ("REJECTED", "CANCELLED"),
    master_only_targets: Iterable[str] = (),
    **kwargs,
) -> CaseTypeDefinition:
    master_only = frozenset(master_only_targets)
    table: dict[str, dict[str, ActorRole]] = {}
    statuses = {initial_status}
    for src, dst in edges:
        role = ActorRole.MASTER_ADMIN if dst in master_only else ActorRole.EXECUTIVE
        table.setdefault(src, {})[dst] = role
        statuses.update((src, dst))
    abort_set = frozenset(abort)
    statuses.update(abort_set)
    terminal_set = frozenset(terminal)
    return CaseTypeDefinition(
        case_type=case_type,
        id_prefix=id_prefix,
        initial_status=initial_status,
        valid_statuses=frozenset(statuses),
        terminal_statuses=terminal_set,
        edges=MappingProxyType({k: MappingProxyType(v) for k, v in table.items()}),
        abort_statuses=abort_set,
        **kwargs,
    )


_FUNDS_EDGES = (
    ("REQUESTED", "UNDER_REVIEW"),
    ("UNDER_REVIEW", "VERIFICATION_PENDING"),
    ("VERIFICATION_PENDING", "APPROVED"),
    ("APPROVED", "AMOUNT_DISBURSED"),
    ("AMOUNT_DISBURSED", "COMPLETED"),
)

_DEFINITIONS = (
    _define(
        CaseType.GRIEVANCE,
        "GRV",
        "NEW",
        [
            ("NEW", "TRIAGED"),
            ("NEW", "ASSIGNED"),
            ("TRIAGED", "ASSIGNED"),
            ("ASSIGNED", "IN_PROGRESS"),
            ("IN_PROGRESS", "DEPT_ESCALATED"),
            ("DEPT_ESCALATED", "IN_PROGRESS"),
            ("IN_PROGRESS", "RESOLVED"),
            ("DEPT_ESCALATED", "RESOLVED"),
            ("RESOLVED", "CLOSED"),
            ("RESOLVED", "IN_PROGRESS"),
        ],
        terminal=("CLOSED", "REJECTED", "CANCELLED"),
        assignment_entry_status="ASSIGNED",
    ),
    _define(
        CaseType.DISPUTE,
        "DSP",
        "NEW",
        [
            ("NEW", "UNDER_REVIEW"),
            ("NEW", "MEDIATION_SCHEDULED"),
            ("UNDER_REVIEW", "MEDIATION_SCHEDULED"),
            ("UNDER_REVIEW", "REFERRED_TO_DEPT"),
            ("MEDIATION_SCHEDULED", "IN_MEDIATION"),
            ("IN_MEDIATION", "MEDIATION_SCHEDULED"),
            ("IN_MEDIATION", "SETTLED"),
            ("IN_MEDIATION", "REFERRED_TO_DEPT"),
            ("IN_MEDIATION", "REFERRED_TO_COURT"),
            ("SETTLED", "CLOSED"),
            ("REFERRED_TO_DEPT", "CLOSED"),
            ("REFERRED_TO_COURT", "CLOSED"),
        ],
        terminal=("CLOSED", "REJECTED", "CANCELLED"),
    ),
    _define(
        CaseType.TEMPLE_LETTER,
        "TDL",
        "REQUESTED",
        [
            ("REQUESTED", "UNDER_REVIEW"),
            ("UNDER_REVIEW", "APPROVED"),
            ("APPROVED", "LETTER_ISSUED"),
            ("LETTER_ISSUED", "COMPLETED"),
            ("LETTER_ISSUED", "EXPIRED"),
        ],
        terminal=("COMPLETED", "EXPIRED", "REJECTED", "CANCELLED"),
        master_only_targets=("APPROVED",),
        requires_two_stage_verification=True,
        assignment_entry_status="UNDER_REVIEW",
        verification_entry_status="UNDER_REVIEW",
    ),
    _define(
        CaseType.CM_RELIEF,
        "CMR",
        "REQUESTED",
        _FUNDS_EDGES,
        terminal=("COMPLETED", "REJECTED", "CANCELLED"),
        master_only_targets=("APPROVED",),
        requires_two_stage_verification=True,
        assignment_entry_status="UNDER_REVIEW",
        verification_entry_status="VERIFICATION_PENDING",
        priority_values=LABEL_PRIORITIES,
        default_priority="MEDIUM",
    ),
    _define(
        CaseType.EDUCATION,
        "EDU",
        "REQUESTED",
        _FUNDS_EDGES,
        terminal=("COMPLETED", "REJECTED", "CANCELLED"),
        master_only_targets=("APPROVED",),
        requires_two_stage_verification=True,
        assignment_entry_status="UNDER_REVIEW",
        verification_entry_status="VERIFICATION_PENDING",
        priority_values=LABEL_PRIORITIES,
        default_priority="MEDIUM",
    ),
    _define(
        CaseType.APPOINTMENT,
        "APP",
        "REQUESTED",
        [
            ("REQUESTED", "UNDER_REVIEW"),
            ("REQUESTED", "CONFIRMED"),
            ("UNDER_REVIEW", "CONFIRMED"),
            ("CONFIRMED", "RESCHEDULED"),
            ("RESCHEDULED", "CONFIRMED"),
            ("CONFIRMED", "CHECKED_IN"),
            ("CHECKED_IN", "IN_PROGRESS"),
            ("IN_PROGRESS", "COMPLETED"),
            ("CONFIRMED", "NO_SHOW"),
            ("RESCHEDULED", "NO_SHOW"),
        ],
        terminal=("COMPLETED", "NO_SHOW", "REJECTED", "CANCELLED"),
        assignment_entry_status="UNDER_REVIEW",
    ),
    _define(
        CaseType.CSR_INDUSTRIAL,
        "CSR",
        "APPLIED",
        [
            ("APPLIED", "UNDER_REVIEW"),
            ("UNDER_REVIEW", "PROPOSAL_SENT"),
            ("UNDER_REVIEW", "VERIFICATION_PENDING"),
            ("PROPOSAL_SENT", "VERIFICATION_PENDING"),
            ("VERIFICATION_PENDING", "APPROVED"),
            ("APPROVED", "MOU_SIGNED"),
            ("MOU_SIGNED", "IN_PROGRESS"),
            ("IN_PROGRESS", "COMPLETED"),
        ],
        terminal=("COMPLETED", "REJECTED", "CANCELLED"),
        master_only_targets=("APPROVED",),
        requires_two_stage_verification=True,
        assignment_entry_status="UNDER_REVIEW",
        verification_entry_status="VERIFICATION_PENDING",
    ),
    _define(
        CaseType.PROGRAM,
        "PRG",
        "PLANNED",
        [
            ("PLANNED", "REGISTRATION"),
            ("REGISTRATION", "REGISTRATION_CLOSED"),
            ("REGISTRATION_CLOSED", "SCREENING"),
            ("REGISTRATION_CLOSED", "ONGOING"),
            ("SCREENING", "SELECTION"),
            ("SELECTION", "ONGOING"),
            ("ONGOING", "COMPLETED"),
            ("PLANNED", "POSTPONED"),
            ("REGISTRATION", "POSTPONED"),
            ("POSTPONED", "PLANNED"),
        ],
        terminal=("COMPLETED", "CANCELLED"),
        abort=("CANCELLED",),
    ),
)

REGISTRY: Mapping[CaseType, CaseTypeDefinition] = MappingProxyType(
    {d.case_type: d for d in _DEFINITIONS}
)


def parse_case_type(case_type: str | CaseType) -> CaseType:
    """Return the CaseType for a string. Raises UnknownCaseType."""
    try:
        return CaseType(case_type)
    except ValueError as e:
        raise UnknownCaseType(
            f"Unknown case type {case_type!r}. Known: {[t.value for t in CaseType]}",
            case_type=str(case_type),
        ) from e


def get_definition(case_type: str | CaseType) -> CaseTypeDefinition:
    """Return the lifecycle definition for case_type. Raises UnknownCaseType."""
    ct = parse_case_type(case_type)
    try:
        return REGISTRY[ct]
    except KeyError as e:
        raise UnknownCaseType(f"No definition registered for {ct}", case_type=str(ct)) from e


def priority_rank(priority: str) -> int:
    """Urgency rank of a priority string (1 = most urgent)."""
    try:
        return PRIORITY_RANK[priority]
    except KeyError as e:
        raise InvalidPriority(f"Unknown priority {priority!r}", priority=priority) from e
