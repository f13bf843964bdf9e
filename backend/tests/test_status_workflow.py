"""
Tests for status normalization, stage progression and state invariants.
"""
import pytest

from taskflow import status_workflow
from taskflow.errors import IllegalState, InvalidTransition, ValidationFailed
from taskflow.models import ApprovalStatus, Stage, Task, TaskStatus


def make_task(status=TaskStatus.PENDING, **fields):
    return Task(task_id='t1', created_by='alice', status=status, **fields)


class TestNormalize:
    """Tests for mapping raw status tokens to canonical stages."""

    def test_canonical_tokens_pass_through(self):
        for stage in Stage.ORDER:
            assert status_workflow.normalize(stage) == stage

    def test_column_reference_is_unwrapped(self):
        assert status_workflow.normalize('column_in_progress') == Stage.IN_PROGRESS
        assert status_workflow.normalize('column_completed') == Stage.COMPLETED

    def test_legacy_and_unknown_tokens_become_pending(self):
        assert status_workflow.normalize('cancelled') == Stage.PENDING
        assert status_workflow.normalize('column_cancelled') == Stage.PENDING
        assert status_workflow.normalize('blocked') == Stage.PENDING
        assert status_workflow.normalize('') == Stage.PENDING
        assert status_workflow.normalize(None) == Stage.PENDING

    def test_stored_approved_status_folds_into_approval(self):
        """A legacy approved status has no storage slot of its own."""
        task = status_workflow.apply_normalized_status(make_task(status='approved'))

        assert task.status == TaskStatus.COMPLETED
        assert task.approval_status == ApprovalStatus.APPROVED
        assert status_workflow.current_stage(task) == Stage.APPROVED
        assert status_workflow.current_index(task) == 3


class TestStageIndex:
    """Tests for current_index and next_stage."""

    def test_indices(self):
        assert status_workflow.current_index(make_task(TaskStatus.PENDING)) == 0
        assert status_workflow.current_index(make_task(TaskStatus.IN_PROGRESS)) == 1
        assert status_workflow.current_index(make_task(TaskStatus.COMPLETED)) == 2
        approved = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.APPROVED)
        assert status_workflow.current_index(approved) == 3

    def test_pending_approval_stays_at_completed(self):
        task = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.PENDING)
        assert status_workflow.current_stage(task) == Stage.COMPLETED

    def test_completed_has_no_direct_next_stage(self):
        assert status_workflow.next_stage(make_task(TaskStatus.COMPLETED)) is None
        approved = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.APPROVED)
        assert status_workflow.next_stage(approved) is None

    def test_direct_transitions(self):
        assert status_workflow.is_valid_transition('pending', 'in_progress')
        assert status_workflow.is_valid_transition('in_progress', 'completed')
        assert not status_workflow.is_valid_transition('pending', 'completed')
        assert not status_workflow.is_valid_transition('completed', 'approved')
        assert not status_workflow.is_valid_transition('in_progress', 'pending')


class TestAdvance:
    """Tests for moving a task forward."""

    def test_two_advances_reach_completed(self):
        task = make_task()

        assert status_workflow.advance(task) == TaskStatus.IN_PROGRESS
        assert status_workflow.advance(task) == TaskStatus.COMPLETED
        assert task.direct_completion is False

    def test_third_advance_fails(self):
        task = make_task(TaskStatus.COMPLETED)

        with pytest.raises(InvalidTransition):
            status_workflow.advance(task)
        assert task.status == TaskStatus.COMPLETED

    def test_privileged_completion_is_direct(self):
        task = make_task(TaskStatus.IN_PROGRESS)

        status_workflow.advance(task, privileged=True)

        assert task.direct_completion is True
        assert status_workflow.current_index(task) == 2

    def test_privileged_start_does_not_mark_direct_completion(self):
        task = make_task()
        status_workflow.advance(task, privileged=True)
        assert task.direct_completion is False

    def test_rejected_completion_can_be_completed_again(self):
        task = make_task(TaskStatus.IN_PROGRESS, approval_status=ApprovalStatus.REJECTED,
                         rejection_reason='needs more work on X', rejected_by='alice')

        status_workflow.advance(task)

        assert task.status == TaskStatus.COMPLETED
        assert task.approval_status == ApprovalStatus.REJECTED

    def test_privileged_completion_clears_earlier_rejection(self):
        task = make_task(TaskStatus.IN_PROGRESS, approval_status=ApprovalStatus.REJECTED,
                         rejection_reason='needs more work on X', rejected_by='alice',
                         rejected_at='2024-01-01T00:00:05+00:00')

        status_workflow.advance(task, privileged=True)

        assert task.status == TaskStatus.COMPLETED
        assert task.direct_completion is True
        assert task.approval_status is None
        assert task.rejection_reason is None
        assert task.rejected_by is None
        assert task.rejected_at is None
        status_workflow.check_invariants(task)


class TestRevert:
    """Tests for moving a task backwards."""

    def test_revert_from_approved_to_completed(self):
        task = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.APPROVED,
                         approved_by='alice', approval_requested_by='bob')

        status_workflow.revert(task, 'completed')

        assert task.status == TaskStatus.COMPLETED
        assert task.approval_status is None
        assert task.approved_by is None
        assert task.approval_requested_by is None

    def test_revert_below_completed_clears_direct_completion(self):
        task = make_task(TaskStatus.COMPLETED, direct_completion=True)

        status_workflow.revert(task, 'pending')

        assert task.status == TaskStatus.PENDING
        assert task.direct_completion is False

    def test_revert_clears_rejection(self):
        task = make_task(TaskStatus.IN_PROGRESS, approval_status=ApprovalStatus.REJECTED,
                         rejection_reason='needs more work on X', rejected_by='alice')

        status_workflow.revert(task, 'column_pending')

        assert task.status == TaskStatus.PENDING
        assert task.approval_status is None
        assert task.rejection_reason is None

    def test_revert_while_awaiting_approval_fails(self):
        task = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.PENDING)

        with pytest.raises(InvalidTransition):
            status_workflow.revert(task, 'in_progress')
        assert task.approval_status == ApprovalStatus.PENDING

    def test_revert_to_same_or_later_stage_fails(self):
        task = make_task(TaskStatus.IN_PROGRESS)

        with pytest.raises(InvalidTransition):
            status_workflow.revert(task, 'in_progress')
        with pytest.raises(InvalidTransition):
            status_workflow.revert(task, 'completed')

    def test_unknown_target_is_refused(self):
        task = make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.REJECTED,
                         rejection_reason='needs more work on X', rejected_by='alice')

        for target in ('bogus_stage', 'column_bogus', 'cancelled', 'approved', '', None):
            with pytest.raises(ValidationFailed):
                status_workflow.revert(task, target)

        assert task.status == TaskStatus.COMPLETED
        assert task.approval_status == ApprovalStatus.REJECTED
        assert task.rejection_reason == 'needs more work on X'

    def test_parse_target(self):
        assert status_workflow.parse_target('column_in_progress') == TaskStatus.IN_PROGRESS
        assert status_workflow.parse_target(' pending ') == TaskStatus.PENDING
        with pytest.raises(ValidationFailed) as excinfo:
            status_workflow.parse_target('done')
        assert excinfo.value.details['targetStatus'] == 'done'


class TestInvariants:
    """Tests for check_invariants."""

    def test_consistent_states_pass(self):
        status_workflow.check_invariants(make_task())
        status_workflow.check_invariants(
            make_task(TaskStatus.COMPLETED, approval_status=ApprovalStatus.PENDING)
        )
        status_workflow.check_invariants(
            make_task(TaskStatus.IN_PROGRESS, approval_status=ApprovalStatus.REJECTED,
                      rejection_reason='needs more work on X', rejected_by='alice')
        )

    def test_pending_approval_outside_completed_is_illegal(self):
        with pytest.raises(IllegalState):
            status_workflow.check_invariants(
                make_task(TaskStatus.IN_PROGRESS, approval_status=ApprovalStatus.PENDING)
            )

    def test_non_canonical_status_is_illegal(self):
        with pytest.raises(IllegalState):
            status_workflow.check_invariants(make_task(status='approved'))

    def test_rejection_fields_without_rejection_are_illegal(self):
        with pytest.raises(IllegalState):
            status_workflow.check_invariants(make_task(rejection_reason='stale reason'))

    def test_direct_completion_outside_completed_is_illegal(self):
        with pytest.raises(IllegalState):
            status_workflow.check_invariants(make_task(TaskStatus.IN_PROGRESS, direct_completion=True))
