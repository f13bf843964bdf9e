"""
Tests for the DynamoDB task store.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from taskflow.errors import CollaboratorUnavailable, Conflict
from taskflow.models import Assignment, Task
from taskflow.store import DynamoTaskStore, is_conditional_failure


def client_error(code, reasons=None, operation='TransactWriteItems'):
    response = {'Error': {'Code': code, 'Message': code}}
    if reasons is not None:
        response['CancellationReasons'] = reasons
    return ClientError(response, operation)


@pytest.fixture
def dynamodb():
    resource = MagicMock()
    tables = {'tasks': MagicMock(name='tasks'), 'assignments': MagicMock(name='assignments')}
    resource.Table.side_effect = lambda name: tables[name]
    resource.tables = tables
    return resource


@pytest.fixture
def store(dynamodb):
    return DynamoTaskStore(dynamodb=dynamodb, tasks_table='tasks', assignments_table='assignments')


class TestConditionalFailure:
    """Tests for is_conditional_failure."""

    def test_cancelled_by_condition(self):
        error = client_error('TransactionCanceledException',
                             [{'Code': 'ConditionalCheckFailed'}, {'Code': 'None'}])
        assert is_conditional_failure(error)

    def test_cancelled_for_other_reason(self):
        error = client_error('TransactionCanceledException', [{'Code': 'ThrottlingError'}])
        assert not is_conditional_failure(error)

    def test_plain_conditional_check(self):
        assert is_conditional_failure(client_error('ConditionalCheckFailedException', operation='PutItem'))

    def test_other_errors(self):
        assert not is_conditional_failure(client_error('ProvisionedThroughputExceededException'))


class TestLoad:
    """Tests for reading tasks and assignments."""

    def test_load_task(self, store, dynamodb):
        dynamodb.tables['tasks'].get_item.return_value = {
            'Item': {'taskId': 't1', 'createdBy': 'alice', 'status': 'pending', 'version': 3}
        }

        task = store.load_task('t1')

        assert task.task_id == 't1'
        assert task.version == 3
        dynamodb.tables['tasks'].get_item.assert_called_once_with(Key={'taskId': 't1'}, ConsistentRead=True)

    def test_load_missing_task(self, store, dynamodb):
        dynamodb.tables['tasks'].get_item.return_value = {}
        assert store.load_task('t1') is None

    def test_load_task_failure(self, store, dynamodb):
        dynamodb.tables['tasks'].get_item.side_effect = client_error('InternalServerError', operation='GetItem')

        with pytest.raises(CollaboratorUnavailable):
            store.load_task('t1')

    def test_load_assignments_follows_pages(self, store, dynamodb):
        table = dynamodb.tables['assignments']
        table.query.side_effect = [
            {'Items': [{'assignmentId': 'a1', 'taskId': 't1', 'assignedTo': 'bob'}],
             'LastEvaluatedKey': {'taskId': 't1', 'assignmentId': 'a1'}},
            {'Items': [{'assignmentId': 'a2', 'taskId': 't1', 'assignedTo': 'carol'}]},
        ]

        assignments = store.load_assignments('t1')

        assert [a.assignment_id for a in assignments] == ['a1', 'a2']
        assert table.query.call_count == 2
        second_call = table.query.call_args_list[1][1]
        assert second_call['ExclusiveStartKey'] == {'taskId': 't1', 'assignmentId': 'a1'}

    def test_load_assignments_network_failure(self, store, dynamodb):
        dynamodb.tables['assignments'].query.side_effect = EndpointConnectionError(endpoint_url='http://x')

        with pytest.raises(CollaboratorUnavailable):
            store.load_assignments('t1')


class TestCreate:
    """Tests for create_task."""

    def test_create(self, store, dynamodb):
        task = store.create_task(Task(task_id='t1', created_by='alice'))

        assert task.version == 1
        call = dynamodb.tables['tasks'].put_item.call_args[1]
        assert call['Item']['version'] == 1
        assert call['ConditionExpression'] == 'attribute_not_exists(taskId)'

    def test_create_existing(self, store, dynamodb):
        dynamodb.tables['tasks'].put_item.side_effect = client_error(
            'ConditionalCheckFailedException', operation='PutItem'
        )

        with pytest.raises(Conflict):
            store.create_task(Task(task_id='t1', created_by='alice'))


class TestSave:
    """Tests for the conditional transactional save."""

    def test_save_builds_one_transaction(self, store, dynamodb):
        task = Task(task_id='t1', created_by='alice', version=4)
        assignment = Assignment(assignment_id='a1', task_id='t1', assigned_to='bob', assigned_by='alice')

        version = store.save_task(task, 4, [assignment], ['a0'])

        assert version == 5
        assert task.version == 5
        items = dynamodb.meta.client.transact_write_items.call_args[1]['TransactItems']
        assert len(items) == 3

        task_put = items[0]['Put']
        assert task_put['TableName'] == 'tasks'
        assert task_put['ConditionExpression'] == '#version = :expected'
        assert task_put['ExpressionAttributeValues'] == {':expected': {'N': '4'}}
        assert task_put['Item']['version'] == {'N': '5'}
        assert task_put['Item']['taskId'] == {'S': 't1'}

        assert items[1]['Put']['TableName'] == 'assignments'
        assert items[1]['Put']['Item']['assignedTo'] == {'S': 'bob'}
        assert items[2]['Delete']['Key'] == {'taskId': {'S': 't1'}, 'assignmentId': {'S': 'a0'}}

    def test_lost_race_is_conflict(self, store, dynamodb):
        dynamodb.meta.client.transact_write_items.side_effect = client_error(
            'TransactionCanceledException', [{'Code': 'ConditionalCheckFailed'}]
        )
        task = Task(task_id='t1', created_by='alice', version=4)

        with pytest.raises(Conflict):
            store.save_task(task, 4)
        assert task.version == 4

    def test_other_failure_is_unavailable(self, store, dynamodb):
        dynamodb.meta.client.transact_write_items.side_effect = client_error('InternalServerError')

        with pytest.raises(CollaboratorUnavailable):
            store.save_task(Task(task_id='t1', created_by='alice', version=1), 1)

    def test_oversized_transaction_is_refused(self, store, dynamodb):
        task = Task(task_id='t1', created_by='alice', version=1)

        with pytest.raises(CollaboratorUnavailable):
            store.save_task(task, 1, deleted_assignment_ids=[f"a{i}" for i in range(100)])
        dynamodb.meta.client.transact_write_items.assert_not_called()
