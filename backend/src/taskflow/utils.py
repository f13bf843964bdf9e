"""
Helpers shared by the engine and its Lambda handlers: clock, API Gateway
request parsing, response building and key-case conversion.
"""
import json
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .errors import ValidationFailed, WorkflowError

# Sent on every response; the web client calls the API cross-origin
CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Credentials': True,
    'Content-Type': 'application/json',
}


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def json_default(value: Any) -> Any:
    """
    json.dumps hook for values read back from DynamoDB.

    Numbers come back as Decimal and string sets as set.
    """
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def api_response(status_code: int, body: Any, headers: Dict[str, str] = None) -> Dict[str, Any]:
    """Lambda proxy response with the CORS headers and a JSON body."""
    return {
        'statusCode': status_code,
        'headers': {**CORS_HEADERS, **(headers or {})},
        'body': json.dumps(body, default=json_default),
    }


def error_response(error: WorkflowError) -> Dict[str, Any]:
    """Response for a failed command: the error kind decides the status code."""
    return api_response(error.status_code, error.to_dict())


def parse_body(event: dict) -> dict:
    """
    Decode the JSON object in an API Gateway event body.

    A missing body is an empty command.

    Raises:
        ValidationFailed: Body is not a JSON object
    """
    body = event.get('body')
    if not body:
        return {}
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValidationFailed(f"Request body is not valid JSON: {e.msg}") from e
    if not isinstance(body, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return body


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    return (event.get('pathParameters') or {}).get(param_name)


def to_snake_case(name: str) -> str:
    """Convert a camelCase request key (assignmentId) to snake_case (assignment_id)."""
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def to_camel_case(name: str) -> str:
    """Convert a snake_case attribute (assignment_id) to camelCase (assignmentId)."""
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)
