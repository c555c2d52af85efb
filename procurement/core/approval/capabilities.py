"""Read-only projections over approval requests.

What an actor may do with a request, which requests wait on a user, and
filtering, sorting and summary statistics for request lists.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from procurement.core.lifecycle import ApprovalStatus
from procurement.core.types import Actor

from .models import ApprovalCapabilities, ApprovalRequest, ApprovalRequestStep, StepStatus


# Status order used when sorting by status
STATUS_ORDER: Dict[ApprovalStatus, int] = {
    ApprovalStatus.PENDING: 0,
    ApprovalStatus.IN_PROGRESS: 1,
    ApprovalStatus.APPROVED: 2,
    ApprovalStatus.REJECTED: 3,
    ApprovalStatus.CANCELLED: 4,
    ApprovalStatus.EXPIRED: 5,
}


def _accepts_votes(request: ApprovalRequest) -> bool:
    # make_decision only accepts in-progress requests
    return request.status == ApprovalStatus.IN_PROGRESS


def _awaiting(step: ApprovalRequestStep, user_id: str) -> bool:
    """Whether ``user_id`` is assigned to the active ``step`` and has not responded."""
    if step.status != StepStatus.ACTIVE:
        return False
    assignment = step.get_assignment(user_id)
    return assignment is not None and not assignment.has_responded


def can_user_approve(request: ApprovalRequest, user_id: str) -> bool:
    """Whether ``user_id`` has an outstanding vote on an active step of an in-progress request."""
    if not _accepts_votes(request):
        return False
    return any(_awaiting(step, user_id) for step in request.steps)


def get_capabilities(request: ApprovalRequest, actor: Actor) -> ApprovalCapabilities:
    """
    Derive what ``actor`` may do with ``request`` right now.

    ``is_approver`` is true only while the actor has an outstanding vote on an
    active step, so approvers of pending or finished steps are not counted.
    Such approvers may approve, reject, defer or escalate. Only the requester
    may cancel, and only while the request is in progress.
    """
    is_pending = _accepts_votes(request)

    # Prefer the active step waiting on this actor; fall back to the first active one
    awaiting = [step for step in request.steps if _awaiting(step, actor.id)]
    current_step = awaiting[0] if awaiting else request.current_step

    can_vote = is_pending and bool(awaiting)
    return ApprovalCapabilities(
        can_approve=can_vote,
        can_reject=can_vote,
        can_defer=can_vote,
        can_escalate=can_vote,
        can_cancel=is_pending and request.requester.id == actor.id,
        is_approver=can_vote,
        is_pending=is_pending,
        current_step=current_step,
    )


def get_pending_for_user(requests: Iterable[ApprovalRequest], user_id: str) -> List[ApprovalRequest]:
    """Requests with an active step on which ``user_id`` has not voted yet."""
    return [r for r in requests if can_user_approve(r, user_id)]


@dataclass(frozen=True)
class ApprovalRequestFilter:
    """Criteria for ``filter_requests``; unset fields do not filter."""

    statuses: Tuple[ApprovalStatus, ...] = ()
    object_type: Optional[str] = None
    object_id: Optional[str] = None
    requester_id: Optional[str] = None
    approver_id: Optional[str] = None
    pending_for_user: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    expiring_before: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "statuses", tuple(ApprovalStatus(s) for s in self.statuses))


def _matches(request: ApprovalRequest, criteria: ApprovalRequestFilter) -> bool:
    if criteria.statuses and request.status not in criteria.statuses:
        return False
    if criteria.object_type and request.object_type != criteria.object_type:
        return False
    if criteria.object_id and request.object_id != criteria.object_id:
        return False
    if criteria.requester_id and request.requester.id != criteria.requester_id:
        return False
    if criteria.approver_id and not any(s.is_approver(criteria.approver_id) for s in request.steps):
        return False
    if criteria.pending_for_user and not can_user_approve(request, criteria.pending_for_user):
        return False
    if criteria.created_after and request.created_at < criteria.created_after:
        return False
    if criteria.created_before and request.created_at > criteria.created_before:
        return False
    if (
        criteria.expiring_before
        and request.expires_at is not None
        and request.expires_at > criteria.expiring_before
    ):
        return False
    return True


def filter_requests(
    requests: Iterable[ApprovalRequest], criteria: ApprovalRequestFilter
) -> List[ApprovalRequest]:
    return [r for r in requests if _matches(r, criteria)]


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    EXPIRES_AT = "expires_at"
    STATUS = "status"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ApprovalRequestSort:
    field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC

    def __post_init__(self):
        object.__setattr__(self, "field", SortField(self.field))
        object.__setattr__(self, "direction", SortDirection(self.direction))


def sort_requests(
    requests: Iterable[ApprovalRequest], sort: ApprovalRequestSort
) -> List[ApprovalRequest]:
    """
    Sort requests by a single field. The sort is stable.

    Requests without ``expires_at`` sort after every dated request when
    ascending.
    """
    reverse = sort.direction == SortDirection.DESC
    requests = list(requests)

    if sort.field == SortField.EXPIRES_AT:
        dated = sorted(
            (r for r in requests if r.expires_at is not None),
            key=lambda r: r.expires_at,
            reverse=reverse,
        )
        undated = [r for r in requests if r.expires_at is None]
        return undated + dated if reverse else dated + undated
    if sort.field == SortField.STATUS:
        return sorted(requests, key=lambda r: STATUS_ORDER[r.status], reverse=reverse)
    if sort.field == SortField.UPDATED_AT:
        return sorted(requests, key=lambda r: r.updated_at, reverse=reverse)
    return sorted(requests, key=lambda r: r.created_at, reverse=reverse)


@dataclass(frozen=True)
class ApprovalStats:
    total: int
    pending: int
    approved: int
    rejected: int
    expired: int
    cancelled: int
    avg_processing_ms: Optional[float]
    by_object_type: Dict[str, int]


def calculate_approval_stats(requests: Iterable[ApprovalRequest]) -> ApprovalStats:
    """Counts by status and object type, and mean time to a final decision."""
    counts = {status: 0 for status in ApprovalStatus}
    by_object_type: Dict[str, int] = {}
    total = 0
    processing_ms = []

    for request in requests:
        total += 1
        counts[request.status] += 1
        by_object_type[request.object_type] = by_object_type.get(request.object_type, 0) + 1
        if request.final_decision_at is not None:
            elapsed = request.final_decision_at - request.created_at
            processing_ms.append(elapsed.total_seconds() * 1000)

    return ApprovalStats(
        total=total,
        pending=counts[ApprovalStatus.PENDING] + counts[ApprovalStatus.IN_PROGRESS],
        approved=counts[ApprovalStatus.APPROVED],
        rejected=counts[ApprovalStatus.REJECTED],
        expired=counts[ApprovalStatus.EXPIRED],
        cancelled=counts[ApprovalStatus.CANCELLED],
        avg_processing_ms=sum(processing_ms) / len(processing_ms) if processing_ms else None,
        by_object_type=by_object_type,
    )
