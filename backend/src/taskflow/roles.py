"""
Role/permission source.

Read-only lookup of an actor's elevated-role flag and task sub-permissions.
Users carry a list of role names; each role maps to a set of sub-permissions
for the "tasks" resource in the role-permissions table.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .errors import CollaboratorUnavailable
from .logging import logger

TASKS_RESOURCE = 'tasks'


@dataclass(frozen=True)
class RoleFlags:
    is_elevated: bool = False
    sub_permissions: FrozenSet[str] = field(default_factory=frozenset)

    def has(self, sub_permission: str) -> bool:
        return self.is_elevated or sub_permission in self.sub_permissions


class StaticRoleSource:
    """In-process role source, keyed by user id."""

    def __init__(self, flags: Optional[Dict[str, RoleFlags]] = None):
        self._flags = dict(flags or {})

    def grant(self, user_id: str, is_elevated: bool = False, sub_permissions: Iterable[str] = ()) -> None:
        self._flags[user_id] = RoleFlags(is_elevated, frozenset(sub_permissions))

    def get_role_flags(self, user_id: str) -> RoleFlags:
        return self._flags.get(user_id, RoleFlags())


class DynamoRoleSource:
    """Role source backed by the users and role-permissions tables."""

    def __init__(self, dynamodb=None, users_table: str = None, permissions_table: str = None,
                 elevated_roles: Iterable[str] = None):
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=config.AWS_REGION)
        self.users_table = self.dynamodb.Table(users_table or config.USERS_TABLE)
        self.permissions_table = self.dynamodb.Table(permissions_table or config.ROLE_PERMISSIONS_TABLE)
        self.elevated_roles = set(elevated_roles if elevated_roles is not None else config.ELEVATED_ROLES)

    def get_role_flags(self, user_id: str) -> RoleFlags:
        """
        Look up the user's roles and the task sub-permissions they grant.

        Args:
            user_id: Cognito sub of the actor

        Returns:
            RoleFlags; an unknown user gets no privileges

        Raises:
            CollaboratorUnavailable: DynamoDB could not be reached
        """
        if not user_id:
            return RoleFlags()

        try:
            user = self.users_table.get_item(Key={'userId': user_id}).get('Item')
            if not user:
                return RoleFlags()

            roles = list(user.get('roles') or [])
            if any(role in self.elevated_roles for role in roles):
                return RoleFlags(is_elevated=True)

            granted = set()
            for role in roles:
                permission = self.permissions_table.get_item(
                    Key={'role': role, 'resource': TASKS_RESOURCE}
                ).get('Item') or {}
                sub_permissions = permission.get('subPermissions') or {}
                granted.update(key for key, allowed in sub_permissions.items() if allowed)

            return RoleFlags(is_elevated=False, sub_permissions=frozenset(granted))

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading roles for user {user_id}: {e}")
            raise CollaboratorUnavailable(f"Role lookup failed for user {user_id}") from e
