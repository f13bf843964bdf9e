"""
Handler for reading one task.
GET /tasks/{taskId}
"""
from taskflow.auth import get_actor_id
from taskflow.authorization import Operation
from taskflow.logging import logger, log_event
from taskflow.service import Command
from taskflow.utils import api_response, error_response, get_path_param

from handlers.tasks.execute_command import get_service


def handler(event, context):
    log_event(event)

    actor_id = get_actor_id(event)
    if not actor_id:
        return api_response(401, {'error': 'Unauthorized', 'message': 'Authentication required'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return api_response(400, {'error': 'BadRequest', 'message': 'Missing taskId'})

    try:
        result = get_service().execute(Command(Operation.VIEW_TASK, actor_id, task_id))
    except Exception as e:
        logger.error(f"Error reading task {task_id}: {e}")
        return api_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})

    if not result.ok:
        return error_response(result.error)

    return api_response(200, {'task': result.snapshot.to_dict()})
