"""
Task workflow service: the single entry point for workflow commands.

Every command runs the same cycle:

    0. validate command parameters
    1. load task + assignments
    2. normalize the stored status
    3. authorization gate
    4. sub-workflow validation + mutation
    5. statusHistory append if the status changed
    6. conditional save (task version must be unchanged)
    7. publish domain events

Steps 1-6 are retried from scratch when the save loses a version race. No
state is saved and no event is published when any step fails.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import approval_workflow, assignment_workflow, pool_workflow, status_workflow
from .authorization import AuthorizationGate, Operation
from .config import config
from .errors import (
    Conflict,
    Forbidden,
    IllegalState,
    NotFound,
    ValidationFailed,
    WorkflowError,
)
from .events import DomainEvent, EventType
from .logging import logger
from .models import Assignment, StatusHistoryEntry, Task, TaskSnapshot, TaskStatus
from .utils import now_iso

# Parameters each command cannot run without
REQUIRED_PARAMS = {
    Operation.ASSIGN_MEMBER: ('user_id',),
    Operation.UNASSIGN_MEMBER: ('assignment_id',),
    Operation.ACCEPT_ASSIGNMENT: ('assignment_id',),
    Operation.REJECT_ASSIGNMENT: ('assignment_id', 'reason'),
    Operation.APPROVE_REJECTION: ('assignment_id',),
    Operation.REJECT_REJECTION: ('assignment_id', 'reason'),
    Operation.REVERT_STATUS: ('target_status',),
    Operation.REJECT_COMPLETION: ('reason',),
    Operation.APPROVE_POOL_CLAIM: ('user_id',),
    Operation.REJECT_POOL_CLAIM: ('user_id',),
}

# Flags that must arrive as JSON booleans when present
BOOLEAN_PARAMS = ('is_private', 'is_in_pool', 'keep_in_pool')


@dataclass
class Command:
    name: str
    actor_id: Optional[str]
    task_id: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommandResult:
    """Either a snapshot of the task after the command, or the error that stopped it."""
    snapshot: Optional[TaskSnapshot] = None
    error: Optional[WorkflowError] = None
    changed: bool = False
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> TaskSnapshot:
        if self.error is not None:
            raise self.error
        return self.snapshot


class WorkflowContext:
    """Mutable state of one command attempt."""

    def __init__(self, command: Command, task: Task, assignments: List[Assignment], now: str):
        self.command = command
        self.task = task
        self.assignments = assignments
        self.now = now
        self.expected_version = task.version
        self.original_status = task.status
        self.original_assignments = {a.assignment_id: a.to_item() for a in assignments}
        self.deleted_assignment_ids: List[str] = []
        self.events: List[DomainEvent] = []
        self.changed = False

    @property
    def actor_id(self) -> str:
        return self.command.actor_id

    def param(self, name: str, default: Any = None) -> Any:
        return self.command.params.get(name, default)

    def record(self, changed: bool, event_type: str, **payload) -> None:
        """Note a mutation and queue its event. No-ops queue nothing."""
        if not changed:
            return
        self.changed = True
        self.events.append(DomainEvent(
            event_type=event_type,
            task_id=self.task.task_id,
            actor_id=self.actor_id,
            payload=payload,
            occurred_at=self.now,
        ))

    def changed_assignments(self) -> List[Assignment]:
        return [
            a for a in self.assignments
            if self.original_assignments.get(a.assignment_id) != a.to_item()
        ]


def validate_command(command: Command) -> None:
    """
    Input-level checks that need no task state.

    Raises:
        Forbidden: No authenticated actor
        ValidationFailed: Missing or malformed parameters, or a too-short
            rejection reason
    """
    if not command.actor_id:
        raise Forbidden(command.name, None, "An authenticated user is required")

    if command.name != Operation.CREATE_TASK and not command.task_id:
        raise ValidationFailed("A task id is required")

    missing = [name for name in REQUIRED_PARAMS.get(command.name, ()) if command.params.get(name) in (None, '')]
    if missing:
        raise ValidationFailed(f"Missing parameters for {command.name}: {', '.join(missing)}",
                               {'missing': missing})

    if command.name in (Operation.REJECT_ASSIGNMENT, Operation.REJECT_REJECTION):
        assignment_workflow.validate_reason(command.params.get('reason'))

    if command.name == Operation.REJECT_COMPLETION and not str(command.params.get('reason')).strip():
        raise ValidationFailed("A reason is required to reject a completion")

    if command.name == Operation.REVERT_STATUS:
        status_workflow.parse_target(command.params.get('target_status'))

    malformed = [name for name in BOOLEAN_PARAMS
                 if name in command.params and not isinstance(command.params[name], bool)]
    if malformed:
        raise ValidationFailed(f"Parameters must be true or false: {', '.join(malformed)}",
                               {'malformed': malformed})


class TaskWorkflowService:
    """Façade that authorizes, applies, persists and announces workflow commands."""

    def __init__(self, store, role_source, event_sink, max_retries: int = None,
                 clock: Callable[[], str] = None):
        self.store = store
        self.role_source = role_source
        self.event_sink = event_sink
        self.gate = AuthorizationGate(role_source)
        self.max_retries = config.MAX_CONFLICT_RETRIES if max_retries is None else max_retries
        self.clock = clock or now_iso
        self._handlers = {
            Operation.VIEW_TASK: self._view_task,
            Operation.ASSIGN_MEMBER: self._assign_member,
            Operation.UNASSIGN_MEMBER: self._unassign_member,
            Operation.ACCEPT_ASSIGNMENT: self._accept_assignment,
            Operation.REJECT_ASSIGNMENT: self._reject_assignment,
            Operation.APPROVE_REJECTION: self._approve_rejection,
            Operation.REJECT_REJECTION: self._reject_rejection,
            Operation.ADVANCE_STATUS: self._advance_status,
            Operation.REVERT_STATUS: self._revert_status,
            Operation.REQUEST_APPROVAL: self._request_approval,
            Operation.APPROVE_COMPLETION: self._approve_completion,
            Operation.REJECT_COMPLETION: self._reject_completion,
            Operation.REQUEST_POOL_CLAIM: self._request_pool_claim,
            Operation.APPROVE_POOL_CLAIM: self._approve_pool_claim,
            Operation.REJECT_POOL_CLAIM: self._reject_pool_claim,
            Operation.ADD_TO_POOL: self._add_to_pool,
            Operation.REMOVE_FROM_POOL: self._remove_from_pool,
            Operation.ARCHIVE_TASK: self._archive_task,
            Operation.UNARCHIVE_TASK: self._unarchive_task,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self, command: Command) -> CommandResult:
        """
        Run one command.

        Args:
            command: Command name, actor, target task and parameters

        Returns:
            CommandResult holding the task snapshot or the WorkflowError
        """
        try:
            validate_command(command)
            if command.name == Operation.CREATE_TASK:
                return self._create_task(command)

            handler = self._handlers.get(command.name)
            if handler is None:
                raise ValidationFailed(f"Unknown command {command.name}")

            attempt = 0
            while True:
                try:
                    return self._run(command, handler)
                except Conflict:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    logger.info(f"Retrying {command.name} on task {command.task_id} "
                                f"after version conflict (attempt {attempt})")

        except IllegalState as e:
            logger.exception(f"Invariant violation during {command.name} on task {command.task_id}: {e}")
            return CommandResult(error=e)
        except WorkflowError as e:
            logger.warning(f"{command.name} on task {command.task_id} by {command.actor_id} "
                           f"failed: {e.kind}: {e.message}")
            return CommandResult(error=e)

    def _run(self, command: Command, handler: Callable[[WorkflowContext], None]) -> CommandResult:
        task = self.store.load_task(command.task_id)
        if task is None:
            raise NotFound(f"Task {command.task_id} not found")
        assignments = self.store.load_assignments(command.task_id)

        status_workflow.apply_normalized_status(task)
        status_workflow.check_invariants(task)

        ctx = WorkflowContext(command, task, assignments, self.clock())
        handler(ctx)

        if not ctx.changed:
            return CommandResult(snapshot=self.snapshot(task, assignments))

        if task.status != ctx.original_status:
            task.status_history.append(StatusHistoryEntry(task.status, ctx.actor_id, ctx.now))
            ctx.record(True, EventType.TASK_STATUS_CHANGED,
                       fromStatus=ctx.original_status, toStatus=task.status,
                       stage=status_workflow.current_stage(task))

        task.updated_at = ctx.now
        status_workflow.check_invariants(task)

        version = self.store.save_task(
            task,
            ctx.expected_version,
            ctx.changed_assignments(),
            ctx.deleted_assignment_ids,
        )
        logger.info(f"{command.name} on task {task.task_id} by {ctx.actor_id} committed at version {version}")

        for event in ctx.events:
            self.event_sink.publish(event)

        return CommandResult(snapshot=self.snapshot(task, assignments), changed=True, events=ctx.events)

    def snapshot(self, task: Task, assignments: List[Assignment]) -> TaskSnapshot:
        tail = task.status_history[-config.HISTORY_TAIL_LENGTH:] if config.HISTORY_TAIL_LENGTH > 0 else []
        return TaskSnapshot(
            task_id=task.task_id,
            title=task.title,
            status=task.status,
            approval_status=task.approval_status,
            stage=status_workflow.current_stage(task),
            stage_index=status_workflow.current_index(task),
            created_by=task.created_by,
            is_in_pool=task.is_in_pool,
            pool_requests=list(task.pool_requests),
            is_private=task.is_private,
            is_archived=task.is_archived,
            direct_completion=task.direct_completion,
            version=task.version,
            assignments=[a.to_item() for a in assignments],
            status_history=[entry.to_item() for entry in tail],
            rejection_reason=task.rejection_reason,
            rejected_by=task.rejected_by,
        )

    # ------------------------------------------------------------------
    # Task creation and viewing
    # ------------------------------------------------------------------

    def _create_task(self, command: Command) -> CommandResult:
        params = command.params
        now = self.clock()
        task = Task(
            task_id=command.task_id or params.get('task_id') or str(uuid.uuid4()),
            created_by=command.actor_id,
            title=params.get('title') or '',
            description=params.get('description'),
            status=TaskStatus.PENDING,
            is_private=params.get('is_private', False),
            is_in_pool=params.get('is_in_pool', False),
            status_history=[StatusHistoryEntry(TaskStatus.PENDING, command.actor_id, now)],
            created_at=now,
            updated_at=now,
        )
        self.store.create_task(task)

        event = DomainEvent(EventType.TASK_CREATED, task.task_id, command.actor_id,
                            {'title': task.title, 'isInPool': task.is_in_pool,
                             'isPrivate': task.is_private}, occurred_at=now)
        self.event_sink.publish(event)
        logger.info(f"Task {task.task_id} created by {command.actor_id}")
        return CommandResult(snapshot=self.snapshot(task, []), changed=True, events=[event])

    def _view_task(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.VIEW_TASK)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def _target_assignment(self, ctx: WorkflowContext, operation: str) -> Assignment:
        assignment = assignment_workflow.find_assignment(ctx.assignments, ctx.param('assignment_id'))
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, operation, assignment)
        return assignment

    def _assign_member(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.ASSIGN_MEMBER)
        assignment = assignment_workflow.assign(
            ctx.task, ctx.assignments, ctx.param('user_id'), ctx.actor_id,
            notes=ctx.param('notes'), now=ctx.now
        )
        ctx.record(True, EventType.MEMBER_ASSIGNED,
                   assignmentId=assignment.assignment_id, assignedTo=assignment.assigned_to)

    def _unassign_member(self, ctx: WorkflowContext) -> None:
        assignment = self._target_assignment(ctx, Operation.UNASSIGN_MEMBER)
        assignment_workflow.remove(ctx.task, ctx.assignments, assignment)
        ctx.deleted_assignment_ids.append(assignment.assignment_id)
        ctx.record(True, EventType.MEMBER_UNASSIGNED,
                   assignmentId=assignment.assignment_id, assignedTo=assignment.assigned_to)

    def _accept_assignment(self, ctx: WorkflowContext) -> None:
        assignment = self._target_assignment(ctx, Operation.ACCEPT_ASSIGNMENT)
        changed = assignment_workflow.accept(assignment, now=ctx.now)
        ctx.record(changed, EventType.ASSIGNMENT_ACCEPTED,
                   assignmentId=assignment.assignment_id, assignedBy=assignment.assigned_by)

    def _reject_assignment(self, ctx: WorkflowContext) -> None:
        assignment = self._target_assignment(ctx, Operation.REJECT_ASSIGNMENT)
        changed = assignment_workflow.reject(ctx.task, ctx.assignments, assignment, ctx.param('reason'))
        ctx.record(changed, EventType.ASSIGNMENT_REJECTED,
                   assignmentId=assignment.assignment_id, assignedBy=assignment.assigned_by,
                   reason=assignment.rejection_reason)

    def _approve_rejection(self, ctx: WorkflowContext) -> None:
        assignment = self._target_assignment(ctx, Operation.APPROVE_REJECTION)
        changed = assignment_workflow.approve_rejection(assignment, ctx.actor_id, now=ctx.now)
        ctx.record(changed, EventType.REJECTION_APPROVED,
                   assignmentId=assignment.assignment_id, assignedTo=assignment.assigned_to)

    def _reject_rejection(self, ctx: WorkflowContext) -> None:
        assignment = self._target_assignment(ctx, Operation.REJECT_REJECTION)
        changed = assignment_workflow.reject_rejection(
            ctx.task, ctx.assignments, assignment, ctx.actor_id, ctx.param('reason'), now=ctx.now
        )
        ctx.record(changed, EventType.REJECTION_OVERRULED,
                   assignmentId=assignment.assignment_id, assignedTo=assignment.assigned_to,
                   reason=assignment.rejection_rejection_reason)

    # ------------------------------------------------------------------
    # Status and approval
    # ------------------------------------------------------------------

    def _advance_status(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.ADVANCE_STATUS)
        privileged = (ctx.task.created_by == ctx.actor_id
                      or self.role_source.get_role_flags(ctx.actor_id).is_elevated)
        status_workflow.advance(ctx.task, privileged=privileged)
        ctx.changed = True

    def _revert_status(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REVERT_STATUS)
        from_stage = status_workflow.current_stage(ctx.task)
        status_workflow.revert(ctx.task, ctx.param('target_status'))
        # Approved → completed keeps the stored status, so announce the stage change here
        if ctx.task.status == ctx.original_status:
            ctx.record(True, EventType.TASK_STATUS_CHANGED,
                       fromStatus=from_stage, toStatus=ctx.task.status,
                       stage=status_workflow.current_stage(ctx.task))
        ctx.changed = True

    def _request_approval(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REQUEST_APPROVAL)
        changed = approval_workflow.request_approval(ctx.task, ctx.actor_id)
        ctx.record(changed, EventType.APPROVAL_REQUESTED, requestedBy=ctx.actor_id)

    def _approve_completion(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.APPROVE_COMPLETION)
        changed = approval_workflow.approve(ctx.task, ctx.actor_id, now=ctx.now)
        ctx.record(changed, EventType.COMPLETION_APPROVED,
                   approvedBy=ctx.actor_id, requestedBy=ctx.task.approval_requested_by)

    def _reject_completion(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REJECT_COMPLETION)
        changed = approval_workflow.reject_approval(ctx.task, ctx.actor_id, ctx.param('reason'), now=ctx.now)
        ctx.record(changed, EventType.COMPLETION_REJECTED,
                   rejectedBy=ctx.actor_id, reason=ctx.task.rejection_reason,
                   requestedBy=ctx.task.approval_requested_by)

    # ------------------------------------------------------------------
    # Pool
    # ------------------------------------------------------------------

    def _request_pool_claim(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REQUEST_POOL_CLAIM)
        changed = pool_workflow.request_claim(ctx.task, ctx.assignments, ctx.actor_id)
        ctx.record(changed, EventType.POOL_CLAIM_REQUESTED, userId=ctx.actor_id)

    def _approve_pool_claim(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.APPROVE_POOL_CLAIM)
        keep_in_pool = ctx.param('keep_in_pool', False)
        assignment = pool_workflow.approve_claim(
            ctx.task, ctx.assignments, ctx.param('user_id'), ctx.actor_id,
            keep_in_pool=keep_in_pool, now=ctx.now
        )
        ctx.record(True, EventType.POOL_CLAIM_APPROVED,
                   userId=assignment.assigned_to, assignmentId=assignment.assignment_id,
                   keepInPool=keep_in_pool)

    def _reject_pool_claim(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REJECT_POOL_CLAIM)
        user_id = ctx.param('user_id')
        changed = pool_workflow.reject_claim(ctx.task, user_id)
        ctx.record(changed, EventType.POOL_CLAIM_REJECTED, userId=user_id)

    def _add_to_pool(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.ADD_TO_POOL)
        ctx.record(pool_workflow.add_to_pool(ctx.task), EventType.TASK_ADDED_TO_POOL)

    def _remove_from_pool(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.REMOVE_FROM_POOL)
        ctx.record(pool_workflow.remove_from_pool(ctx.task), EventType.TASK_REMOVED_FROM_POOL)

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def _archive_task(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.ARCHIVE_TASK)
        changed = not ctx.task.is_archived
        ctx.task.is_archived = True
        ctx.record(changed, EventType.TASK_ARCHIVED)

    def _unarchive_task(self, ctx: WorkflowContext) -> None:
        self.gate.require(ctx.actor_id, ctx.task, ctx.assignments, Operation.UNARCHIVE_TASK)
        changed = ctx.task.is_archived
        ctx.task.is_archived = False
        ctx.record(changed, EventType.TASK_UNARCHIVED)
