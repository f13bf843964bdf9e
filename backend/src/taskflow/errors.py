"""
Workflow error kinds.

Every command either returns an updated task snapshot or one of these errors.
Domain errors (NotFound, Forbidden, InvalidTransition, ValidationFailed,
Conflict) are expected outcomes of user input or races. IllegalState is
always a bug. CollaboratorUnavailable marks transient infrastructure failures
so callers can retry instead of surfacing a permanent rejection.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""
    kind = 'WorkflowError'
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': self.kind, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body


class NotFound(WorkflowError):
    """Task or assignment id does not exist."""
    kind = 'NotFound'
    status_code = 404


class Forbidden(WorkflowError):
    """The authorization gate denied the operation."""
    kind = 'Forbidden'
    status_code = 403

    def __init__(self, operation: str, actor_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"User {actor_id} is not allowed to perform {operation}",
            {'operation': operation, 'actorId': actor_id}
        )
        self.operation = operation
        self.actor_id = actor_id


class InvalidTransition(WorkflowError):
    """Requested change is not reachable from the current state."""
    kind = 'InvalidTransition'
    status_code = 409


class ValidationFailed(WorkflowError):
    """Input-level violation."""
    kind = 'ValidationFailed'
    status_code = 422


class Conflict(WorkflowError):
    """Optimistic concurrency collision; reload and retry."""
    kind = 'Conflict'
    status_code = 409


class IllegalState(WorkflowError):
    """Stored or computed state breaks a task invariant."""
    kind = 'IllegalState'
    status_code = 500


class CollaboratorUnavailable(WorkflowError):
    """Persistence, role source or another collaborator failed."""
    kind = 'CollaboratorUnavailable'
    status_code = 503
