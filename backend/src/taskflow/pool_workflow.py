"""
Pool workflow: shared-pool tasks that any user may ask to claim.

A claim is a user id in task.pool_requests. Approving a claim removes it and
creates a normal pending assignment; rejecting it only removes it.
"""
from typing import List, Optional

from . import assignment_workflow
from .errors import InvalidTransition, ValidationFailed
from .models import Assignment, Task


def add_to_pool(task: Task) -> bool:
    if task.is_in_pool:
        return False
    task.is_in_pool = True
    return True


def request_claim(task: Task, assignments: List[Assignment], user_id: str) -> bool:
    """
    Add user_id to the task's pending claims.

    Returns:
        False when the user already has a standing claim (retry-safe no-op)

    Raises:
        InvalidTransition: Task is not in the pool
        ValidationFailed: Claiming one's own task, or already an active assignee
    """
    if not task.is_in_pool:
        raise InvalidTransition(f"Task {task.task_id} is not in the pool")
    if user_id == task.created_by:
        raise ValidationFailed("The task creator cannot claim their own task")
    if user_id in task.pool_requests:
        return False
    if assignment_workflow.active_assignment_for(assignments, user_id) is not None:
        raise ValidationFailed(
            f"User {user_id} is already assigned to task {task.task_id}",
            {'userId': user_id}
        )

    task.pool_requests.append(user_id)
    return True


def approve_claim(
    task: Task,
    assignments: List[Assignment],
    user_id: str,
    approver_id: str,
    keep_in_pool: bool = False,
    now: Optional[str] = None
) -> Assignment:
    """
    Approve a standing claim: the claimant gets a pending assignment.

    With keep_in_pool=False the task leaves the pool and every other claim
    is abandoned. With keep_in_pool=True the other claims stay open.

    Raises:
        ValidationFailed: The user has no standing claim
    """
    if user_id not in task.pool_requests:
        raise ValidationFailed(
            f"User {user_id} has no pending claim on task {task.task_id}",
            {'userId': user_id}
        )

    assignment = assignment_workflow.assign(task, assignments, user_id, approver_id, now=now)
    task.pool_requests.remove(user_id)

    task.is_in_pool = keep_in_pool
    if not keep_in_pool:
        task.pool_requests = []
    return assignment


def reject_claim(task: Task, user_id: str) -> bool:
    """
    Drop a standing claim. The task stays in the pool.

    Raises:
        ValidationFailed: The user has no standing claim
    """
    if user_id not in task.pool_requests:
        raise ValidationFailed(
            f"User {user_id} has no pending claim on task {task.task_id}",
            {'userId': user_id}
        )
    task.pool_requests.remove(user_id)
    return True


def remove_from_pool(task: Task) -> bool:
    """Take the task out of the pool. Assignments and standing claims are kept."""
    if not task.is_in_pool:
        return False
    task.is_in_pool = False
    return True
