"""
Configuration module for the workflow engine and its Lambda handlers.
Loads all environment variables needed by the engine.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # DynamoDB Tables
    TASKS_TABLE = os.environ.get('TASKS_TABLE', '')
    ASSIGNMENTS_TABLE = os.environ.get('ASSIGNMENTS_TABLE', '')
    USERS_TABLE = os.environ.get('USERS_TABLE', '')
    ROLE_PERMISSIONS_TABLE = os.environ.get('ROLE_PERMISSIONS_TABLE', '')

    # SQS Queues
    TASK_EVENTS_QUEUE_URL = os.environ.get('TASK_EVENTS_QUEUE_URL', '')

    # Roles that count as administrator / team-leader equivalents
    ELEVATED_ROLES = [
        role.strip()
        for role in os.environ.get('ELEVATED_ROLES', 'super_admin,main_admin,team_leader').split(',')
        if role.strip()
    ]

    # Workflow rules
    MIN_REJECTION_REASON_LENGTH = int(os.environ.get('MIN_REJECTION_REASON_LENGTH', '20'))
    MAX_CONFLICT_RETRIES = int(os.environ.get('MAX_CONFLICT_RETRIES', '3'))
    HISTORY_TAIL_LENGTH = int(os.environ.get('HISTORY_TAIL_LENGTH', '10'))


config = Config()
