"""
Tests for the completion approval gate.
"""
import pytest

from taskflow import approval_workflow
from taskflow.errors import InvalidTransition, ValidationFailed
from taskflow.models import ApprovalStatus, Task, TaskStatus


def completed_task(**fields):
    return Task(task_id='t1', created_by='alice', status=TaskStatus.COMPLETED, **fields)


class TestRequestApproval:
    """Tests for request_approval."""

    def test_request_from_completed(self):
        task = completed_task()

        assert approval_workflow.request_approval(task, 'bob') is True
        assert task.approval_status == ApprovalStatus.PENDING
        assert task.approval_requested_by == 'bob'

    def test_request_twice_is_noop(self):
        task = completed_task(approval_status=ApprovalStatus.PENDING, approval_requested_by='bob')

        assert approval_workflow.request_approval(task, 'carol') is False
        assert task.approval_requested_by == 'bob'

    def test_request_before_completion_fails(self):
        task = Task(task_id='t1', created_by='alice', status=TaskStatus.IN_PROGRESS)

        with pytest.raises(InvalidTransition):
            approval_workflow.request_approval(task, 'bob')
        assert task.approval_status is None

    def test_request_on_direct_completion_fails(self):
        task = completed_task(direct_completion=True)

        with pytest.raises(InvalidTransition):
            approval_workflow.request_approval(task, 'alice')

    def test_request_on_approved_fails(self):
        task = completed_task(approval_status=ApprovalStatus.APPROVED)

        with pytest.raises(InvalidTransition):
            approval_workflow.request_approval(task, 'bob')

    def test_resubmit_after_rejection(self):
        """Reworked tasks go straight back to completed with approval pending."""
        task = Task(task_id='t1', created_by='alice', status=TaskStatus.IN_PROGRESS,
                    approval_status=ApprovalStatus.REJECTED,
                    rejection_reason='needs more work on X', rejected_by='alice')

        assert approval_workflow.request_approval(task, 'bob') is True
        assert task.status == TaskStatus.COMPLETED
        assert task.approval_status == ApprovalStatus.PENDING
        assert task.rejection_reason is None
        assert task.rejected_by is None


class TestApprove:
    """Tests for approve."""

    def test_approve_pending(self):
        task = completed_task(approval_status=ApprovalStatus.PENDING)

        assert approval_workflow.approve(task, 'alice', now='2024-01-01T00:00:00+00:00') is True
        assert task.approval_status == ApprovalStatus.APPROVED
        assert task.approved_by == 'alice'
        assert task.approved_at == '2024-01-01T00:00:00+00:00'

    def test_approve_twice_is_noop(self):
        task = completed_task(approval_status=ApprovalStatus.APPROVED, approved_by='alice')
        assert approval_workflow.approve(task, 'quinn') is False
        assert task.approved_by == 'alice'

    def test_approve_without_request_fails(self):
        with pytest.raises(InvalidTransition):
            approval_workflow.approve(completed_task(), 'alice')


class TestRejectApproval:
    """Tests for reject_approval."""

    def test_reject_returns_task_to_in_progress(self):
        task = completed_task(approval_status=ApprovalStatus.PENDING)

        assert approval_workflow.reject_approval(task, 'alice', 'needs more work on X') is True
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.approval_status == ApprovalStatus.REJECTED
        assert task.rejected_by == 'alice'
        assert task.rejection_reason == 'needs more work on X'

    def test_reject_needs_reason(self):
        task = completed_task(approval_status=ApprovalStatus.PENDING)

        with pytest.raises(ValidationFailed):
            approval_workflow.reject_approval(task, 'alice', '   ')
        assert task.approval_status == ApprovalStatus.PENDING

    def test_reject_twice_is_noop(self):
        task = completed_task(approval_status=ApprovalStatus.PENDING)
        approval_workflow.reject_approval(task, 'alice', 'needs more work on X')

        assert approval_workflow.reject_approval(task, 'alice', 'needs more work on X') is False

    def test_reject_without_request_fails(self):
        with pytest.raises(InvalidTransition):
            approval_workflow.reject_approval(completed_task(), 'alice', 'needs more work on X')
