"""
Data models and status constants for the task workflow engine.
Based on the task lifecycle: Pending → In Progress → Completed → (Approved)
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .utils import to_camel_case


class TaskStatus:
    """Stored task statuses."""
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'

    ALL = (PENDING, IN_PROGRESS, COMPLETED)


class Stage:
    """Displayed workflow stages. APPROVED is derived, never stored."""
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    APPROVED = 'approved'

    ORDER = (PENDING, IN_PROGRESS, COMPLETED, APPROVED)


class LegacyStatus:
    """Tokens found in older task records."""
    CANCELLED = 'cancelled'
    COLUMN_PREFIX = 'column_'


class ApprovalStatus:
    """Completion approval statuses."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALL = (PENDING, APPROVED, REJECTED)


class AssignmentStatus:
    """Assignment statuses."""
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


class SubPermission:
    """Task sub-permissions granted through roles."""
    CAN_ASSIGN = 'canAssign'
    CAN_CHANGE_STATUS = 'canChangeStatus'
    CAN_APPROVE = 'canApprove'
    CAN_VIEW_PRIVATE = 'canViewPrivate'


@dataclass
class StatusHistoryEntry:
    status: str
    changed_by: str
    changed_at: str

    def to_item(self) -> Dict[str, Any]:
        return {'status': self.status, 'changedBy': self.changed_by, 'changedAt': self.changed_at}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'StatusHistoryEntry':
        return cls(
            status=item.get('status'),
            changed_by=item.get('changedBy'),
            changed_at=item.get('changedAt'),
        )


@dataclass
class Task:
    """The workflow aggregate root."""
    task_id: str
    created_by: str
    title: str = ''
    description: Optional[str] = None
    status: str = TaskStatus.PENDING
    approval_status: Optional[str] = None
    approval_requested_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[str] = None
    direct_completion: bool = False
    is_in_pool: bool = False
    pool_requests: List[str] = field(default_factory=list)
    is_private: bool = False
    is_archived: bool = False
    assigned_users: List[str] = field(default_factory=list)
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0

    def clear_approval(self) -> None:
        """Drop every approval and rejection field."""
        self.approval_status = None
        self.approval_requested_by = None
        self.approved_by = None
        self.approved_at = None
        self.clear_rejection()

    def clear_rejection(self) -> None:
        self.rejection_reason = None
        self.rejected_by = None
        self.rejected_at = None

    def to_item(self) -> Dict[str, Any]:
        """Serialize to a DynamoDB item (camelCase attributes)."""
        return {
            'taskId': self.task_id,
            'createdBy': self.created_by,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'approvalStatus': self.approval_status,
            'approvalRequestedBy': self.approval_requested_by,
            'approvedBy': self.approved_by,
            'approvedAt': self.approved_at,
            'rejectionReason': self.rejection_reason,
            'rejectedBy': self.rejected_by,
            'rejectedAt': self.rejected_at,
            'directCompletion': self.direct_completion,
            'isInPool': self.is_in_pool,
            'poolRequests': list(self.pool_requests),
            'isPrivate': self.is_private,
            'isArchived': self.is_archived,
            'assignedUsers': list(self.assigned_users),
            'statusHistory': [entry.to_item() for entry in self.status_history],
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'version': self.version,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Task':
        """Build a Task from a DynamoDB item. Status is left raw; see status_workflow.normalize."""
        return cls(
            task_id=item['taskId'],
            created_by=item.get('createdBy'),
            title=item.get('title') or '',
            description=item.get('description'),
            status=item.get('status'),
            approval_status=item.get('approvalStatus'),
            approval_requested_by=item.get('approvalRequestedBy'),
            approved_by=item.get('approvedBy'),
            approved_at=item.get('approvedAt'),
            rejection_reason=item.get('rejectionReason'),
            rejected_by=item.get('rejectedBy'),
            rejected_at=item.get('rejectedAt'),
            direct_completion=bool(item.get('directCompletion', False)),
            is_in_pool=bool(item.get('isInPool', False)),
            pool_requests=list(item.get('poolRequests') or []),
            is_private=bool(item.get('isPrivate', False)),
            is_archived=bool(item.get('isArchived', False)),
            assigned_users=list(item.get('assignedUsers') or []),
            status_history=[StatusHistoryEntry.from_item(e) for e in item.get('statusHistory') or []],
            created_at=item.get('createdAt'),
            updated_at=item.get('updatedAt'),
            version=int(item.get('version', 0)),
        )


@dataclass
class Assignment:
    """One record per (task, user) assignment. Never reused after rejection."""
    assignment_id: str
    task_id: str
    assigned_to: str
    assigned_by: str
    status: str = AssignmentStatus.PENDING
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_approved_by: Optional[str] = None
    rejection_approved_at: Optional[str] = None
    rejection_rejected_by: Optional[str] = None
    rejection_rejected_at: Optional[str] = None
    rejection_rejection_reason: Optional[str] = None
    assigned_at: Optional[str] = None
    accepted_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != AssignmentStatus.REJECTED

    def to_item(self) -> Dict[str, Any]:
        return {
            'assignmentId': self.assignment_id,
            'taskId': self.task_id,
            'assignedTo': self.assigned_to,
            'assignedBy': self.assigned_by,
            'status': self.status,
            'notes': self.notes,
            'rejectionReason': self.rejection_reason,
            'rejectionApprovedBy': self.rejection_approved_by,
            'rejectionApprovedAt': self.rejection_approved_at,
            'rejectionRejectedBy': self.rejection_rejected_by,
            'rejectionRejectedAt': self.rejection_rejected_at,
            'rejectionRejectionReason': self.rejection_rejection_reason,
            'assignedAt': self.assigned_at,
            'acceptedAt': self.accepted_at,
            'completedAt': self.completed_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Assignment':
        return cls(
            assignment_id=item['assignmentId'],
            task_id=item['taskId'],
            assigned_to=item.get('assignedTo'),
            assigned_by=item.get('assignedBy'),
            status=item.get('status', AssignmentStatus.PENDING),
            notes=item.get('notes'),
            rejection_reason=item.get('rejectionReason'),
            rejection_approved_by=item.get('rejectionApprovedBy'),
            rejection_approved_at=item.get('rejectionApprovedAt'),
            rejection_rejected_by=item.get('rejectionRejectedBy'),
            rejection_rejected_at=item.get('rejectionRejectedAt'),
            rejection_rejection_reason=item.get('rejectionRejectionReason'),
            assigned_at=item.get('assignedAt'),
            accepted_at=item.get('acceptedAt'),
            completed_at=item.get('completedAt'),
        )


@dataclass
class TaskSnapshot:
    """Read model returned by every command."""
    task_id: str
    title: str
    status: str
    approval_status: Optional[str]
    stage: str
    stage_index: int
    created_by: str
    is_in_pool: bool
    pool_requests: List[str]
    is_private: bool
    is_archived: bool
    direct_completion: bool
    version: int
    assignments: List[Dict[str, Any]]
    status_history: List[Dict[str, Any]]
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """API representation with camelCase keys."""
        return {to_camel_case(key): value for key, value in asdict(self).items()}
