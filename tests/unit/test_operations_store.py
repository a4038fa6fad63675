"""Tests for the operation state store (app/core/lifecycle/operations.py)."""
import datetime
import threading

import pytest

from app.core.lifecycle.exceptions import ConflictError, UnknownResourceError, ValidationError
from app.core.lifecycle.models import OperationState, OperationType
from app.core.lifecycle.operations import Operation


def test_no_operation_initially(store, instance):
    assert store.current_operation(instance.guid) is None


def test_begin_operation_creates_in_progress_record(store, instance):
    op = store.begin_operation(instance.guid, OperationType.CREATE, "provisioning")

    assert op.in_progress
    assert op.type is OperationType.CREATE
    assert op.description == "provisioning"
    assert store.current_operation(instance.guid) == op


def test_begin_operation_conflicts_while_in_progress(store, instance):
    store.begin_operation(instance.guid, OperationType.UPDATE)

    with pytest.raises(ConflictError) as exc_info:
        store.begin_operation(instance.guid, OperationType.DELETE)

    assert exc_info.value.resource_name == "orders-db"
    current = store.current_operation(instance.guid)
    assert current.type is OperationType.UPDATE
    assert current.in_progress


@pytest.mark.parametrize("outcome", [OperationState.SUCCEEDED, OperationState.FAILED])
def test_terminal_operation_can_be_replaced(store, instance, outcome):
    store.begin_operation(instance.guid, OperationType.CREATE)
    store.complete_operation(instance.guid, outcome)

    op = store.begin_operation(instance.guid, OperationType.DELETE, "next")

    assert op.type is OperationType.DELETE
    assert op.in_progress


def test_begin_operation_unknown_resource(store):
    with pytest.raises(UnknownResourceError):
        store.begin_operation("does-not-exist", OperationType.DELETE)


@pytest.mark.parametrize("description", ["line one\nline two", "bell\x07", "esc\x1b[0m"])
def test_begin_operation_rejects_control_characters(store, instance, description):
    with pytest.raises(ValidationError):
        store.begin_operation(instance.guid, OperationType.UPDATE, description)

    assert store.current_operation(instance.guid) is None


def test_complete_operation_keeps_description_when_none(store, instance):
    store.begin_operation(instance.guid, OperationType.CREATE, "provisioning")

    op = store.complete_operation(instance.guid, OperationState.SUCCEEDED)

    assert op.state is OperationState.SUCCEEDED
    assert op.description == "provisioning"


def test_complete_operation_sanitizes_broker_detail(store, instance):
    store.begin_operation(instance.guid, OperationType.CREATE)

    op = store.complete_operation(instance.guid, OperationState.FAILED, "quota\nexceeded\t\x1b")

    assert op.description == "quota exceeded"


def test_complete_operation_requires_terminal_state(store, instance):
    store.begin_operation(instance.guid, OperationType.CREATE)

    with pytest.raises(ValueError):
        store.complete_operation(instance.guid, OperationState.IN_PROGRESS)


def test_complete_operation_is_noop_for_deleted_resource(store, repository, instance):
    store.begin_operation(instance.guid, OperationType.DELETE)
    repository.delete(instance.guid)

    assert store.complete_operation(instance.guid, OperationState.SUCCEEDED) is None
    assert store.current_operation(instance.guid) is None


def test_complete_operation_without_record_creates_nothing(store, instance):
    assert store.complete_operation(instance.guid, OperationState.FAILED, "boom") is None
    assert store.current_operation(instance.guid) is None


def test_concurrent_begin_operation_admits_exactly_one(store, instance):
    """Racing callers: one wins, the rest see a conflict."""
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def attempt(i):
        barrier.wait()
        try:
            store.begin_operation(instance.guid, OperationType.UPDATE, f"caller {i}")
            outcome = ("ok", i)
        except ConflictError:
            outcome = ("conflict", i)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [i for status, i in results if status == "ok"]
    assert len(winners) == 1
    assert len(results) == workers
    assert store.current_operation(instance.guid).description == f"caller {winners[0]}"


def test_lock_scope_release_restores_previous_operation(store, instance):
    store.begin_operation(instance.guid, OperationType.CREATE, "provisioned")
    previous = store.complete_operation(instance.guid, OperationState.SUCCEEDED)

    scope = store.lock_scope(instance.guid, OperationType.DELETE)
    assert store.current_operation(instance.guid).in_progress

    scope.release()

    assert scope.released
    assert store.current_operation(instance.guid) == previous


def test_lock_scope_release_clears_when_there_was_no_operation(store, instance):
    scope = store.lock_scope(instance.guid, OperationType.DELETE)
    scope.release()
    scope.release()

    assert store.current_operation(instance.guid) is None


def test_lock_scope_conflicts_with_in_progress_operation(store, instance):
    store.begin_operation(instance.guid, OperationType.CREATE)

    with pytest.raises(ConflictError):
        store.lock_scope(instance.guid, OperationType.DELETE)


def test_restore_operation_ignores_missing_resource(store):
    snapshot = Operation("gone", OperationType.CREATE, OperationState.SUCCEEDED)
    store.restore_operation("gone", snapshot)

    assert store.current_operation("gone") is None


def test_stuck_operations_lists_old_in_progress_only(store, repository, broker, instance):
    other = repository.add_instance("fresh-db", broker.guid, "svc-postgres", "plan-small")
    done = repository.add_instance("done-db", broker.guid, "svc-postgres", "plan-small")
    store.begin_operation(instance.guid, OperationType.CREATE)
    store.begin_operation(other.guid, OperationType.CREATE)
    store.begin_operation(done.guid, OperationType.CREATE)
    store.complete_operation(done.guid, OperationState.SUCCEEDED)

    # Backdate one in-progress record
    old = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=3)
    store.restore_operation(
        instance.guid,
        Operation(instance.guid, OperationType.CREATE, OperationState.IN_PROGRESS, "", old),
    )

    stuck = store.stuck_operations(datetime.timedelta(hours=1))

    assert [op.resource_guid for op in stuck] == [instance.guid]
    assert store.stuck_operations(datetime.timedelta(days=1)) == []
