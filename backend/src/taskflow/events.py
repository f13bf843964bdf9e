"""
Domain events and event sinks.

Events are published after a command has been committed. Delivery is
fire-and-forget and at-least-once; consumers (notifications, activity feeds)
deduplicate on eventId.
"""
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3

from .config import config
from .logging import logger
from .utils import now_iso


class EventType:
    """Domain event names."""
    TASK_CREATED = 'TaskCreated'
    TASK_STATUS_CHANGED = 'TaskStatusChanged'
    MEMBER_ASSIGNED = 'MemberAssigned'
    MEMBER_UNASSIGNED = 'MemberUnassigned'
    ASSIGNMENT_ACCEPTED = 'AssignmentAccepted'
    ASSIGNMENT_REJECTED = 'AssignmentRejected'
    REJECTION_APPROVED = 'AssignmentRejectionApproved'
    REJECTION_OVERRULED = 'AssignmentRejectionOverruled'
    APPROVAL_REQUESTED = 'ApprovalRequested'
    COMPLETION_APPROVED = 'CompletionApproved'
    COMPLETION_REJECTED = 'CompletionRejected'
    POOL_CLAIM_REQUESTED = 'PoolClaimRequested'
    POOL_CLAIM_APPROVED = 'PoolClaimApproved'
    POOL_CLAIM_REJECTED = 'PoolClaimRejected'
    TASK_ADDED_TO_POOL = 'TaskAddedToPool'
    TASK_REMOVED_FROM_POOL = 'TaskRemovedFromPool'
    TASK_ARCHIVED = 'TaskArchived'
    TASK_UNARCHIVED = 'TaskUnarchived'


@dataclass
class DomainEvent:
    event_type: str
    task_id: str
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: str = field(default_factory=now_iso)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_message(self) -> Dict[str, Any]:
        return {
            'eventId': self.event_id,
            'eventType': self.event_type,
            'taskId': self.task_id,
            'actorId': self.actor_id,
            'occurredAt': self.occurred_at,
            'payload': self.payload,
        }


class InMemoryEventSink:
    """Collects published events in a list."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def publish(self, event: DomainEvent) -> bool:
        self.events.append(event)
        return True

    def types(self) -> List[str]:
        return [event.event_type for event in self.events]


class SqsEventSink:
    """Publishes domain events to the task events queue."""

    def __init__(self, queue_url: Optional[str] = None, sqs=None):
        self.queue_url = queue_url if queue_url is not None else config.TASK_EVENTS_QUEUE_URL
        self.sqs = sqs or boto3.client('sqs', region_name=config.AWS_REGION)

    def publish(self, event: DomainEvent) -> bool:
        """
        Send one event to SQS.

        Args:
            event: Committed domain event

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.queue_url:
            logger.warning(f"No events queue configured, dropping {event.event_type} for task {event.task_id}")
            return False

        try:
            self.sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(event.to_message(), default=str),
                MessageAttributes={
                    'eventType': {'DataType': 'String', 'StringValue': event.event_type}
                }
            )
            logger.info(f"Published {event.event_type} for task {event.task_id}")
            return True
        except Exception as e:
            logger.error(f"Error publishing {event.event_type} to SQS: {e}")
            return False
