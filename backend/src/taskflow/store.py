"""
DynamoDB persistence for tasks and their assignments.

Tasks live in the tasks table keyed by taskId. Assignments live in the
assignments table keyed by (taskId, assignmentId) so a task's assignments can
be read with one strongly consistent query.

Every write goes through one transact_write_items call whose task Put is
conditioned on the version read before the command ran. A concurrent writer
makes the whole transaction fail, which surfaces as Conflict.
"""
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .errors import CollaboratorUnavailable, Conflict
from .logging import logger
from .models import Assignment, Task

# DynamoDB limit on items per transaction
MAX_TRANSACTION_ITEMS = 100

serializer = TypeSerializer()


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a plain item into DynamoDB low-level attribute values."""
    return {key: serializer.serialize(value) for key, value in item.items()}


def is_conditional_failure(error: ClientError) -> bool:
    """True when a transaction was cancelled by a failed condition check."""
    code = error.response.get('Error', {}).get('Code')
    if code == 'ConditionalCheckFailedException':
        return True
    if code != 'TransactionCanceledException':
        return False
    reasons = error.response.get('CancellationReasons') or []
    if not reasons:
        # Older botocore versions only carry the reasons in the message
        return 'ConditionalCheckFailed' in str(error)
    return any(reason.get('Code') == 'ConditionalCheckFailed' for reason in reasons)


class DynamoTaskStore:
    """Task/assignment store with optimistic version checks."""

    def __init__(self, dynamodb=None, tasks_table: str = None, assignments_table: str = None):
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=config.AWS_REGION)
        self.tasks_table_name = tasks_table or config.TASKS_TABLE
        self.assignments_table_name = assignments_table or config.ASSIGNMENTS_TABLE
        self.tasks_table = self.dynamodb.Table(self.tasks_table_name)
        self.assignments_table = self.dynamodb.Table(self.assignments_table_name)

    def load_task(self, task_id: str) -> Optional[Task]:
        """
        Read a task with a strongly consistent read.

        Returns:
            Task, or None if it does not exist

        Raises:
            CollaboratorUnavailable: DynamoDB could not be reached
        """
        try:
            response = self.tasks_table.get_item(Key={'taskId': task_id}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error loading task {task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not load task {task_id}") from e

        item = response.get('Item')
        return Task.from_item(item) if item else None

    def load_assignments(self, task_id: str) -> List[Assignment]:
        """
        Read every assignment of a task, following pagination.

        Raises:
            CollaboratorUnavailable: DynamoDB could not be reached
        """
        query_params = {
            'KeyConditionExpression': Key('taskId').eq(task_id),
            'ConsistentRead': True,
        }
        items = []
        try:
            while True:
                response = self.assignments_table.query(**query_params)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                query_params['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error loading assignments for task {task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not load assignments of task {task_id}") from e

        return [Assignment.from_item(item) for item in items]

    def create_task(self, task: Task) -> Task:
        """
        Insert a new task. Fails with Conflict if the id is taken.
        """
        task.version = 1
        try:
            self.tasks_table.put_item(
                Item=task.to_item(),
                ConditionExpression='attribute_not_exists(taskId)'
            )
        except ClientError as e:
            task.version = 0
            if is_conditional_failure(e):
                raise Conflict(f"Task {task.task_id} already exists") from e
            logger.error(f"Error creating task {task.task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not create task {task.task_id}") from e
        except BotoCoreError as e:
            task.version = 0
            logger.error(f"Error creating task {task.task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not create task {task.task_id}") from e

        logger.info(f"Created task {task.task_id}")
        return task

    def save_task(
        self,
        task: Task,
        expected_version: int,
        assignments: Iterable[Assignment] = (),
        deleted_assignment_ids: Iterable[str] = ()
    ) -> int:
        """
        Atomically write the task and the changed part of its assignments.

        Args:
            task: Task to write; its version is bumped on success
            expected_version: Version read before the command ran
            assignments: New or modified assignments to put
            deleted_assignment_ids: Assignments to delete

        Returns:
            The new task version

        Raises:
            Conflict: Another writer committed first
            CollaboratorUnavailable: DynamoDB could not be reached
        """
        new_version = expected_version + 1
        item = task.to_item()
        item['version'] = new_version

        transact_items = [{
            'Put': {
                'TableName': self.tasks_table_name,
                'Item': serialize_item(item),
                'ConditionExpression': '#version = :expected',
                'ExpressionAttributeNames': {'#version': 'version'},
                'ExpressionAttributeValues': {':expected': serializer.serialize(expected_version)},
            }
        }]
        for assignment in assignments:
            transact_items.append({
                'Put': {
                    'TableName': self.assignments_table_name,
                    'Item': serialize_item(assignment.to_item()),
                }
            })
        for assignment_id in deleted_assignment_ids:
            transact_items.append({
                'Delete': {
                    'TableName': self.assignments_table_name,
                    'Key': serialize_item({'taskId': task.task_id, 'assignmentId': assignment_id}),
                }
            })

        if len(transact_items) > MAX_TRANSACTION_ITEMS:
            raise CollaboratorUnavailable(
                f"Save of task {task.task_id} touches {len(transact_items)} items, "
                f"more than one transaction allows"
            )

        try:
            self.dynamodb.meta.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            if is_conditional_failure(e):
                logger.warning(f"Version conflict saving task {task.task_id} at version {expected_version}")
                raise Conflict(
                    f"Task {task.task_id} was modified concurrently",
                    {'expectedVersion': expected_version}
                ) from e
            logger.error(f"Error saving task {task.task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not save task {task.task_id}") from e
        except BotoCoreError as e:
            logger.error(f"Error saving task {task.task_id}: {e}")
            raise CollaboratorUnavailable(f"Could not save task {task.task_id}") from e

        task.version = new_version
        return new_version
