"""
Authorization gate.

Central predicate evaluated before every operation:

    can_perform(actor, task, assignments, operation) -> bool

It combines the actor's role flags (read from the role source on every
check), the actor's relationship to the task (creator, active member,
assignee or assigner of a specific assignment) and the task's privacy and
pool flags.
"""
from typing import List, Optional

from . import assignment_workflow
from .errors import Forbidden
from .logging import logger
from .models import Assignment, SubPermission, Task


class Operation:
    """Operations understood by the gate. Values double as command names."""
    CREATE_TASK = 'createTask'
    VIEW_TASK = 'getTask'
    ASSIGN_MEMBER = 'assignMember'
    UNASSIGN_MEMBER = 'unassignMember'
    ACCEPT_ASSIGNMENT = 'acceptAssignment'
    REJECT_ASSIGNMENT = 'rejectAssignment'
    APPROVE_REJECTION = 'approveRejection'
    REJECT_REJECTION = 'rejectRejection'
    ADVANCE_STATUS = 'advanceStatus'
    REVERT_STATUS = 'revertStatus'
    REQUEST_APPROVAL = 'requestApproval'
    APPROVE_COMPLETION = 'approveCompletion'
    REJECT_COMPLETION = 'rejectCompletion'
    REQUEST_POOL_CLAIM = 'requestPoolClaim'
    APPROVE_POOL_CLAIM = 'approvePoolClaim'
    REJECT_POOL_CLAIM = 'rejectPoolClaim'
    ADD_TO_POOL = 'addToPool'
    REMOVE_FROM_POOL = 'removeFromPool'
    ARCHIVE_TASK = 'archiveTask'
    UNARCHIVE_TASK = 'unarchiveTask'


# Operations that act on one specific assignment record
ASSIGNMENT_OPERATIONS = {
    Operation.UNASSIGN_MEMBER,
    Operation.ACCEPT_ASSIGNMENT,
    Operation.REJECT_ASSIGNMENT,
    Operation.APPROVE_REJECTION,
    Operation.REJECT_REJECTION,
}


class AuthorizationGate:
    """Decides whether an actor may perform an operation on a task."""

    def __init__(self, role_source):
        self.role_source = role_source

    def can_view(self, actor_id: str, task: Task, assignments: List[Assignment], flags=None) -> bool:
        """Public tasks are visible to everyone; private ones to members and privileged roles."""
        if not task.is_private:
            return True
        if assignment_workflow.is_active_member(task, assignments, actor_id):
            return True
        flags = flags or self.role_source.get_role_flags(actor_id)
        return flags.has(SubPermission.CAN_VIEW_PRIVATE)

    def can_perform(
        self,
        actor_id: Optional[str],
        task: Optional[Task],
        assignments: List[Assignment],
        operation: str,
        assignment: Optional[Assignment] = None
    ) -> bool:
        """
        Evaluate the permission table for one (actor, task, operation) triple.

        Args:
            actor_id: Authenticated user id
            task: Target task (None only for CREATE_TASK)
            assignments: Current assignments of the task
            operation: One of Operation
            assignment: Target assignment for assignment-level operations

        Returns:
            True when the operation is permitted
        """
        if not actor_id:
            return False
        if operation == Operation.CREATE_TASK:
            return True
        if task is None:
            return False

        if operation in ASSIGNMENT_OPERATIONS and assignment is None:
            return False

        # The parties to an assignment keep access to it on private tasks too
        if operation in (Operation.ACCEPT_ASSIGNMENT, Operation.REJECT_ASSIGNMENT):
            return assignment.assigned_to == actor_id
        if operation in (Operation.APPROVE_REJECTION, Operation.REJECT_REJECTION):
            return assignment.assigned_by == actor_id

        flags = self.role_source.get_role_flags(actor_id)
        if not self.can_view(actor_id, task, assignments, flags):
            return False
        if operation == Operation.VIEW_TASK:
            return True

        is_creator = task.created_by == actor_id
        is_member = assignment_workflow.is_active_member(task, assignments, actor_id)

        if operation == Operation.ADVANCE_STATUS:
            return is_member or flags.has(SubPermission.CAN_CHANGE_STATUS)

        if operation == Operation.REQUEST_APPROVAL:
            return is_member or flags.is_elevated

        if operation in (Operation.APPROVE_COMPLETION, Operation.REJECT_COMPLETION):
            return is_creator or flags.has(SubPermission.CAN_APPROVE)

        if operation == Operation.REVERT_STATUS:
            return flags.is_elevated

        if operation == Operation.ASSIGN_MEMBER:
            return is_creator or flags.has(SubPermission.CAN_ASSIGN)

        if operation == Operation.UNASSIGN_MEMBER:
            return (is_creator or assignment.assigned_by == actor_id
                    or flags.has(SubPermission.CAN_ASSIGN))

        if operation == Operation.REQUEST_POOL_CLAIM:
            return not is_creator and task.is_in_pool

        if operation in (Operation.APPROVE_POOL_CLAIM, Operation.REJECT_POOL_CLAIM,
                         Operation.ADD_TO_POOL, Operation.ARCHIVE_TASK, Operation.UNARCHIVE_TASK):
            return is_creator or flags.is_elevated

        if operation == Operation.REMOVE_FROM_POOL:
            return is_creator

        logger.warning(f"Unknown operation {operation} denied for {actor_id}")
        return False

    def require(
        self,
        actor_id: Optional[str],
        task: Optional[Task],
        assignments: List[Assignment],
        operation: str,
        assignment: Optional[Assignment] = None
    ) -> None:
        """
        Raise Forbidden unless can_perform() allows the operation.

        Raises:
            Forbidden: Carries the operation name and actor id for audit
        """
        if not self.can_perform(actor_id, task, assignments, operation, assignment):
            task_id = task.task_id if task else None
            logger.warning(f"Denied {operation} on task {task_id} for user {actor_id}")
            raise Forbidden(operation, actor_id)
