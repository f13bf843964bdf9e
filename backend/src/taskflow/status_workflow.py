"""
Status workflow: the canonical task-status progression.

    pending(0) → in_progress(1) → completed(2) → approved(3)

"approved" is a derived stage (status=completed and approvalStatus=approved);
no stored status carries that value. Only pending→in_progress and
in_progress→completed are direct transitions. Entering the approved stage goes
through the approval workflow and moving backwards goes through revert().
"""
from typing import Any, Optional

from .errors import IllegalState, InvalidTransition, ValidationFailed
from .models import ApprovalStatus, LegacyStatus, Stage, Task, TaskStatus

KNOWN_TOKENS = (
    Stage.PENDING,
    Stage.IN_PROGRESS,
    Stage.COMPLETED,
    Stage.APPROVED,
    LegacyStatus.CANCELLED,
)

DIRECT_TRANSITIONS = {
    (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
}


def normalize(raw_status: Any) -> str:
    """
    Map a raw or legacy status token to one of the four canonical stages.

    Board column references ("column_in_progress") are unwrapped to the
    status they carry. Unknown, missing and "cancelled" tokens become pending.

    Args:
        raw_status: Value read from storage or received from a client

    Returns:
        One of Stage.ORDER
    """
    if not raw_status or not isinstance(raw_status, str):
        return Stage.PENDING

    token = raw_status.strip()
    if token.startswith(LegacyStatus.COLUMN_PREFIX):
        token = token[len(LegacyStatus.COLUMN_PREFIX):]

    if token not in KNOWN_TOKENS:
        return Stage.PENDING
    if token == LegacyStatus.CANCELLED:
        return Stage.PENDING
    return token


def apply_normalized_status(task: Task) -> Task:
    """
    Fold the stored status of a freshly loaded task into canonical fields.

    A legacy stored "approved" status becomes completed + approvalStatus
    approved, since the approved stage has no storage slot of its own.
    """
    stage = normalize(task.status)
    if stage == Stage.APPROVED:
        task.status = TaskStatus.COMPLETED
        task.approval_status = ApprovalStatus.APPROVED
    else:
        task.status = stage
    return task


def current_index(task: Task) -> int:
    """Index of the task's displayed stage in Stage.ORDER."""
    if task.status == TaskStatus.COMPLETED and task.approval_status == ApprovalStatus.APPROVED:
        return 3
    if task.status == TaskStatus.COMPLETED:
        return 2
    stage = normalize(task.status)
    if stage in Stage.ORDER:
        return Stage.ORDER.index(stage)
    return 0


def current_stage(task: Task) -> str:
    return Stage.ORDER[current_index(task)]


def next_stage(task: Task) -> Optional[str]:
    """
    Stage a plain advance would move the task to, or None.

    Completed tasks never advance directly: an unapproved completed task
    needs the approval workflow and an approved task is already terminal.
    """
    index = current_index(task)
    if index == 3:
        return None
    if task.status == TaskStatus.COMPLETED and task.approval_status != ApprovalStatus.APPROVED:
        return None
    if index + 1 >= len(Stage.ORDER):
        return None
    return Stage.ORDER[index + 1]


def is_valid_transition(from_status: str, to_status: str) -> bool:
    """True only for pending→in_progress and in_progress→completed."""
    return (normalize(from_status), normalize(to_status)) in DIRECT_TRANSITIONS


def advance(task: Task, privileged: bool = False) -> str:
    """
    Move the task one stage forward.

    Args:
        task: Task to mutate
        privileged: Actor is the creator or holds an elevated role. A
            privileged actor completing the task completes it directly,
            with no approval step, and any earlier rejection is cleared.

    Returns:
        The new stored status

    Raises:
        InvalidTransition: No direct transition exists from the current stage
    """
    target = next_stage(task)
    if target is None or not is_valid_transition(task.status, target):
        raise InvalidTransition(
            f"Task {task.task_id} cannot advance from {current_stage(task)}",
            {'currentStage': current_stage(task)}
        )

    task.status = target
    if target == TaskStatus.COMPLETED:
        task.direct_completion = privileged
        if privileged:
            # Direct completions carry no approval state
            task.clear_approval()
    return target


def parse_target(raw_target: Any) -> str:
    """
    Read a requested target status from command input.

    Unlike normalize(), unknown tokens are refused rather than mapped to
    pending. Only stored statuses are valid targets.

    Raises:
        ValidationFailed: Not one of pending, in_progress, completed
    """
    token = raw_target.strip() if isinstance(raw_target, str) else ''
    if token.startswith(LegacyStatus.COLUMN_PREFIX):
        token = token[len(LegacyStatus.COLUMN_PREFIX):]
    if token not in TaskStatus.ALL:
        raise ValidationFailed(
            f"Unknown target status {raw_target!r}",
            {'targetStatus': raw_target, 'allowed': list(TaskStatus.ALL)}
        )
    return token


def revert(task: Task, target_status: Any) -> str:
    """
    Move the task back to a strictly earlier stage.

    Authorization (elevated roles only) is checked by the gate before this
    runs. Reverting out of the approved stage to completed keeps
    status=completed and clears the approval. Reverting below completed
    also clears approval and rejection fields.

    Returns:
        The new stored status

    Raises:
        ValidationFailed: Target is not a stored status
        InvalidTransition: Approval is pending, or the target is not earlier
    """
    target = parse_target(target_status)
    if task.approval_status == ApprovalStatus.PENDING:
        raise InvalidTransition(
            f"Task {task.task_id} is awaiting approval and cannot be reverted"
        )

    from_index = current_index(task)
    target_index = Stage.ORDER.index(target)
    if target_index >= from_index:
        raise InvalidTransition(
            f"Task {task.task_id} can only be reverted to an earlier stage "
            f"({current_stage(task)} → {target})",
            {'currentStage': current_stage(task), 'targetStage': target}
        )

    task.clear_approval()
    task.direct_completion = False
    task.status = target
    return target


def check_invariants(task: Task) -> None:
    """
    Raise IllegalState when stored fields contradict each other.

    Raises:
        IllegalState: On any violated invariant
    """
    if task.status not in TaskStatus.ALL:
        raise IllegalState(f"Task {task.task_id} has non-canonical status {task.status!r}")

    if task.approval_status is not None and task.approval_status not in ApprovalStatus.ALL:
        raise IllegalState(f"Task {task.task_id} has unknown approvalStatus {task.approval_status!r}")

    if task.approval_status in (ApprovalStatus.PENDING, ApprovalStatus.APPROVED) \
            and task.status != TaskStatus.COMPLETED:
        raise IllegalState(
            f"Task {task.task_id} has approvalStatus={task.approval_status} "
            f"while status={task.status}"
        )

    if task.approval_status != ApprovalStatus.REJECTED and (
            task.rejected_by or task.rejected_at or task.rejection_reason):
        raise IllegalState(f"Task {task.task_id} carries rejection fields without a rejection")

    if task.direct_completion and task.status != TaskStatus.COMPLETED:
        raise IllegalState(f"Task {task.task_id} is marked directly completed while {task.status}")
