"""
Handler for running workflow commands.

POST /tasks                      createTask
POST /tasks/{taskId}/commands    any other command, named in the body:

    {"command": "rejectAssignment", "assignmentId": "...", "reason": "..."}

Body keys are camelCase and are passed to the service as snake_case params.
"""
from taskflow.auth import get_actor_id
from taskflow.authorization import Operation
from taskflow.errors import WorkflowError
from taskflow.events import SqsEventSink
from taskflow.logging import logger, log_event
from taskflow.roles import DynamoRoleSource
from taskflow.service import Command, TaskWorkflowService
from taskflow.store import DynamoTaskStore
from taskflow.utils import api_response, error_response, get_path_param, parse_body, to_snake_case

_service = None


def get_service() -> TaskWorkflowService:
    """Build the service once per Lambda container."""
    global _service
    if _service is None:
        _service = TaskWorkflowService(
            store=DynamoTaskStore(),
            role_source=DynamoRoleSource(),
            event_sink=SqsEventSink(),
        )
    return _service


def build_command(event: dict, actor_id: str) -> Command:
    """
    Raises:
        ValidationFailed: Body is not a JSON object
    """
    body = parse_body(event)
    task_id = get_path_param(event, 'taskId')

    name = body.pop('command', None)
    if not name and task_id is None:
        name = Operation.CREATE_TASK

    params = {to_snake_case(key): value for key, value in body.items()}
    return Command(name=name, actor_id=actor_id, task_id=task_id, params=params)


def handler(event, context):
    log_event(event)

    actor_id = get_actor_id(event)
    if not actor_id:
        return api_response(401, {'error': 'Unauthorized', 'message': 'Authentication required'})

    try:
        command = build_command(event, actor_id)
    except WorkflowError as e:
        return error_response(e)
    if not command.name:
        return api_response(400, {'error': 'BadRequest', 'message': 'Missing command name'})

    try:
        result = get_service().execute(command)
    except Exception as e:
        logger.error(f"Error executing {command.name} on task {command.task_id}: {e}")
        return api_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})

    if not result.ok:
        return error_response(result.error)

    status_code = 201 if command.name == Operation.CREATE_TASK else 200
    return api_response(status_code, {
        'task': result.snapshot.to_dict(),
        'changed': result.changed,
    })
