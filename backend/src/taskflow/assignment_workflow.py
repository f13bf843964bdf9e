"""
Assignment workflow: user ↔ task assignment records and their
accept / reject / reject-the-rejection sub-protocol.

Assignments are owned by the task aggregate. Every function here mutates the
in-memory task and assignment list handed in by the service; persistence
happens afterwards in one atomic save. Functions return True when they changed
something and False when the call was an idempotent no-op.
"""
import uuid
from typing import List, Optional

from .config import config
from .errors import InvalidTransition, NotFound, ValidationFailed
from .models import Assignment, AssignmentStatus, Task
from .utils import now_iso


def validate_reason(reason: Optional[str], min_length: Optional[int] = None) -> str:
    """
    Check a rejection reason against the minimum length.

    Returns:
        The stripped reason

    Raises:
        ValidationFailed: Reason is missing or too short
    """
    floor = config.MIN_REJECTION_REASON_LENGTH if min_length is None else min_length
    text = (reason or '').strip()
    if len(text) < floor:
        raise ValidationFailed(
            f"Rejection reason must be at least {floor} characters",
            {'minLength': floor, 'length': len(text)}
        )
    return text


def find_assignment(assignments: List[Assignment], assignment_id: str) -> Assignment:
    for assignment in assignments:
        if assignment.assignment_id == assignment_id:
            return assignment
    raise NotFound(f"Assignment {assignment_id} not found")


def active_assignment_for(assignments: List[Assignment], user_id: str) -> Optional[Assignment]:
    """The user's non-rejected assignment, if any."""
    for assignment in assignments:
        if assignment.assigned_to == user_id and assignment.is_active:
            return assignment
    return None


def is_active_member(task: Task, assignments: List[Assignment], user_id: Optional[str]) -> bool:
    """
    True for the task creator and for users holding a non-rejected assignment.
    Pending (not yet answered) assignees count as members.
    """
    if not user_id:
        return False
    if task.created_by == user_id:
        return True
    return active_assignment_for(assignments, user_id) is not None


def sync_assigned_users(task: Task, assignments: List[Assignment]) -> None:
    """Recompute the denormalised assignedUsers list on the task."""
    users = []
    for assignment in assignments:
        if assignment.is_active and assignment.assigned_to not in users:
            users.append(assignment.assigned_to)
    task.assigned_users = users


def assign(
    task: Task,
    assignments: List[Assignment],
    user_id: str,
    assigner_id: str,
    notes: Optional[str] = None,
    now: Optional[str] = None
) -> Assignment:
    """
    Create a pending assignment for user_id.

    A user whose earlier assignment was rejected gets a new record; the
    rejected one is left untouched.

    Raises:
        ValidationFailed: The user already has an active assignment
    """
    if not user_id:
        raise ValidationFailed("A user id is required to assign a member")

    if active_assignment_for(assignments, user_id) is not None:
        raise ValidationFailed(
            f"User {user_id} is already assigned to task {task.task_id}",
            {'userId': user_id}
        )

    assignment = Assignment(
        assignment_id=str(uuid.uuid4()),
        task_id=task.task_id,
        assigned_to=user_id,
        assigned_by=assigner_id,
        status=AssignmentStatus.PENDING,
        notes=notes,
        assigned_at=now or now_iso(),
    )
    assignments.append(assignment)
    sync_assigned_users(task, assignments)
    return assignment


def accept(assignment: Assignment, now: Optional[str] = None) -> bool:
    """
    Accept a pending assignment. The assignee check is done by the gate.

    Raises:
        InvalidTransition: The assignment was rejected
    """
    if assignment.status == AssignmentStatus.ACCEPTED:
        return False
    if assignment.status != AssignmentStatus.PENDING:
        raise InvalidTransition(
            f"Assignment {assignment.assignment_id} is {assignment.status} and cannot be accepted"
        )

    assignment.status = AssignmentStatus.ACCEPTED
    assignment.accepted_at = now or now_iso()
    return True


def reject(task: Task, assignments: List[Assignment], assignment: Assignment, reason: str) -> bool:
    """
    Reject an assignment with a reason of at least the configured length.

    Raises:
        ValidationFailed: Reason too short
    """
    text = validate_reason(reason)
    if assignment.status == AssignmentStatus.REJECTED:
        return False

    assignment.status = AssignmentStatus.REJECTED
    assignment.rejection_reason = text
    assignment.accepted_at = None
    sync_assigned_users(task, assignments)
    return True


def approve_rejection(assignment: Assignment, actor_id: str, now: Optional[str] = None) -> bool:
    """
    The assigner confirms the assignee's rejection. Terminal for that record.

    Raises:
        InvalidTransition: The assignment is not rejected
    """
    if assignment.status != AssignmentStatus.REJECTED:
        raise InvalidTransition(f"Assignment {assignment.assignment_id} has not been rejected")
    if assignment.rejection_approved_by:
        return False

    assignment.rejection_approved_by = actor_id
    assignment.rejection_approved_at = now or now_iso()
    return True


def reject_rejection(
    task: Task,
    assignments: List[Assignment],
    assignment: Assignment,
    actor_id: str,
    reason: str,
    now: Optional[str] = None
) -> bool:
    """
    The assigner overrules the rejection: the assignment reopens to pending
    and control returns to the assignee.

    Raises:
        ValidationFailed: Reason too short
        InvalidTransition: Not rejected, or the rejection was already confirmed
    """
    text = validate_reason(reason)
    if assignment.status != AssignmentStatus.REJECTED:
        raise InvalidTransition(f"Assignment {assignment.assignment_id} has not been rejected")
    if assignment.rejection_approved_by:
        raise InvalidTransition(
            f"Rejection of assignment {assignment.assignment_id} was already confirmed"
        )
    if active_assignment_for(assignments, assignment.assigned_to) is not None:
        raise InvalidTransition(
            f"User {assignment.assigned_to} already holds a newer assignment on task {task.task_id}"
        )

    assignment.status = AssignmentStatus.PENDING
    assignment.rejection_reason = None
    assignment.rejection_rejected_by = actor_id
    assignment.rejection_rejected_at = now or now_iso()
    assignment.rejection_rejection_reason = text
    sync_assigned_users(task, assignments)
    return True


def remove(task: Task, assignments: List[Assignment], assignment: Assignment) -> Assignment:
    """Hard-delete an assignment from the aggregate. Returns the removed record."""
    assignments.remove(assignment)
    sync_assigned_users(task, assignments)
    return assignment
