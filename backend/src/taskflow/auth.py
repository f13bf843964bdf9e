"""
Actor identity from the API Gateway authorizer context.
"""
from typing import Optional


def get_actor_id(event: dict) -> Optional[str]:
    """
    User id of the caller, or None for an unauthenticated request.

    Cognito user pool authorizers put the user in claims.sub; custom Lambda
    authorizers put it in principalId.
    """
    authorizer = (event.get('requestContext') or {}).get('authorizer') or {}
    claims = authorizer.get('claims') or {}
    return claims.get('sub') or authorizer.get('principalId') or None
