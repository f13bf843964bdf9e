"""
Approval workflow: the completion-approval gate layered on status=completed.

    completed ─ request_approval ─▶ pending ─ approve ─▶ approved (stage 3)
                                           └─ reject_approval ─▶ rejected,
                                              status back to in_progress

Creators and elevated roles complete tasks directly through the status
workflow and never enter this gate.
"""
from typing import Optional

from .errors import InvalidTransition, ValidationFailed
from .models import ApprovalStatus, Task, TaskStatus
from .utils import now_iso


def request_approval(task: Task, requester_id: str) -> bool:
    """
    Ask for completion approval.

    A task whose previous completion was rejected may be resubmitted straight
    from in_progress; it moves back to completed with approval pending.

    Returns:
        False when approval is already pending (retry-safe no-op)

    Raises:
        InvalidTransition: Task not completed, already approved, or completed directly
    """
    if task.approval_status == ApprovalStatus.PENDING:
        return False
    if task.approval_status == ApprovalStatus.APPROVED:
        raise InvalidTransition(f"Task {task.task_id} is already approved")

    # Resubmitting after a rejection completes the reworked task again.
    resubmit = task.approval_status == ApprovalStatus.REJECTED and task.status == TaskStatus.IN_PROGRESS
    if task.status != TaskStatus.COMPLETED and not resubmit:
        raise InvalidTransition(
            f"Task {task.task_id} must be completed before requesting approval",
            {'status': task.status}
        )
    if task.direct_completion:
        raise InvalidTransition(
            f"Task {task.task_id} was completed directly and needs no approval"
        )

    task.clear_rejection()
    task.status = TaskStatus.COMPLETED
    task.approval_status = ApprovalStatus.PENDING
    task.approval_requested_by = requester_id
    return True


def approve(task: Task, approver_id: str, now: Optional[str] = None) -> bool:
    """
    Approve a pending completion. Terminal success state.

    Raises:
        InvalidTransition: No approval is pending
    """
    if task.approval_status == ApprovalStatus.APPROVED:
        return False
    if task.approval_status != ApprovalStatus.PENDING:
        raise InvalidTransition(f"Task {task.task_id} is not awaiting approval")

    task.approval_status = ApprovalStatus.APPROVED
    task.approved_by = approver_id
    task.approved_at = now or now_iso()
    return True


def reject_approval(task: Task, approver_id: str, reason: str, now: Optional[str] = None) -> bool:
    """
    Reject a pending completion. Work resumes: status returns to in_progress.

    Raises:
        ValidationFailed: Empty reason
        InvalidTransition: No approval is pending
    """
    text = (reason or '').strip()
    if not text:
        raise ValidationFailed("A reason is required to reject a completion")

    if task.approval_status == ApprovalStatus.REJECTED:
        return False
    if task.approval_status != ApprovalStatus.PENDING:
        raise InvalidTransition(f"Task {task.task_id} is not awaiting approval")

    task.approval_status = ApprovalStatus.REJECTED
    task.rejection_reason = text
    task.rejected_by = approver_id
    task.rejected_at = now or now_iso()
    task.status = TaskStatus.IN_PROGRESS
    return True
