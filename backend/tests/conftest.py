"""
Shared fixtures for workflow tests.
"""
import os
import sys

import pytest

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from taskflow.events import InMemoryEventSink
from taskflow.memory_store import InMemoryTaskStore
from taskflow.models import SubPermission
from taskflow.roles import StaticRoleSource
from taskflow.service import Command, TaskWorkflowService

CREATOR = 'alice'
MEMBER = 'bob'
OTHER_MEMBER = 'carol'
OUTSIDER = 'dave'
ADMIN = 'root'
APPROVER = 'quinn'
AUDITOR = 'vera'

LONG_REASON = 'I am on leave until next month'
OVERRULE_REASON = 'Please reconsider, this is urgent'


class FakeClock:
    """Monotonic ISO timestamps, one second apart."""

    def __init__(self):
        self.ticks = 0

    def __call__(self):
        self.ticks += 1
        minutes, seconds = divmod(self.ticks, 60)
        return f"2024-01-01T00:{minutes:02d}:{seconds:02d}+00:00"


@pytest.fixture
def roles():
    source = StaticRoleSource()
    source.grant(ADMIN, is_elevated=True)
    source.grant(APPROVER, sub_permissions=[SubPermission.CAN_APPROVE])
    source.grant(AUDITOR, sub_permissions=[SubPermission.CAN_VIEW_PRIVATE])
    return source


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def service(store, roles, sink):
    return TaskWorkflowService(store=store, role_source=roles, event_sink=sink, clock=FakeClock())


def run(service, name, actor, task_id=None, **params):
    """Execute one command and return the CommandResult."""
    return service.execute(Command(name=name, actor_id=actor, task_id=task_id, params=params))


def create_task(service, actor=CREATOR, **params):
    params.setdefault('title', 'Write release notes')
    snapshot = run(service, 'createTask', actor, **params).unwrap()
    return snapshot.task_id
