"""
Logging for the workflow engine and its Lambda handlers.

Everything goes through the "taskflow" logger; LOG_LEVEL sets its level.
"""
import json
import logging

from .config import config

logger = logging.getLogger('taskflow')
logger.setLevel(config.LOG_LEVEL)

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

# Routing fields only. Bodies and headers carry tokens and user-written text.
REQUEST_FIELDS = ('httpMethod', 'resource', 'path', 'pathParameters')


def log_event(event: dict) -> None:
    """Log which route an API Gateway event hit, with its request id."""
    summary = {key: event[key] for key in REQUEST_FIELDS if event.get(key) is not None}
    request_id = (event.get('requestContext') or {}).get('requestId')
    if request_id:
        summary['requestId'] = request_id
    logger.info(f"API request: {json.dumps(summary, sort_keys=True)}")
