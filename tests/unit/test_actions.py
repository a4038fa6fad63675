"""Tests for lifecycle actions (app/core/lifecycle/actions.py)."""
import pytest

from app.core.broker import BrokerClient, BrokerVerb
from app.core.lifecycle.actions import CreateAction, DeleteAction, UpdateAction, build_action
from app.core.lifecycle.exceptions import UnsupportedOperationError
from app.core.lifecycle.models import OperationType
from tests.conftest import StubBrokerResponse


@pytest.fixture()
def client():
    return BrokerClient(timeout=5)


def test_build_action_resolves_verbs(client, repository, broker, instance, key):
    assert build_action(OperationType.CREATE, instance, broker, client, repository).verb is BrokerVerb.PROVISION
    assert build_action(OperationType.CREATE, key, broker, client, repository).verb is BrokerVerb.BIND
    assert build_action(OperationType.UPDATE, instance, broker, client, repository).verb is BrokerVerb.UPDATE
    assert build_action(OperationType.DELETE, instance, broker, client, repository).verb is BrokerVerb.DEPROVISION
    assert build_action(OperationType.DELETE, key, broker, client, repository).verb is BrokerVerb.UNBIND


def test_build_action_types(client, repository, broker, instance):
    assert isinstance(build_action(OperationType.CREATE, instance, broker, client, repository), CreateAction)
    assert isinstance(build_action(OperationType.UPDATE, instance, broker, client, repository), UpdateAction)
    delete = build_action(OperationType.DELETE, instance, broker, client, repository)
    assert isinstance(delete, DeleteAction)
    assert delete.deletes_resource


def test_update_of_key_is_unsupported(client, repository, broker, key):
    with pytest.raises(UnsupportedOperationError):
        build_action(OperationType.UPDATE, key, broker, client, repository)


def test_create_instance_stores_dashboard_url(client, broker_http, repository, broker, instance):
    broker_http.respond("PUT", StubBrokerResponse(201, {"dashboard_url": "https://dash/orders"}))

    outcome = build_action(OperationType.CREATE, instance, broker, client, repository).execute()

    assert outcome.done
    assert repository.get(instance.guid).dashboard_url == "https://dash/orders"


def test_create_key_stores_credentials(client, broker_http, repository, broker, key):
    broker_http.respond("PUT", StubBrokerResponse(201, {"credentials": {"uri": "postgres://u:p@db/orders"}}))

    outcome = build_action(OperationType.CREATE, key, broker, client, repository).execute()

    assert outcome.done
    assert repository.get(key.guid).credentials == {"uri": "postgres://u:p@db/orders"}


def test_update_applies_changes_after_success(client, broker_http, repository, broker, instance):
    action = build_action(
        OperationType.UPDATE, instance, broker, client, repository,
        changes={"name": "orders-db-v2", "plan_id": "plan-large"},
    )

    outcome = action.execute()

    assert outcome.done
    updated = repository.get(instance.guid)
    assert updated.name == "orders-db-v2"
    assert updated.plan_id == "plan-large"
    assert broker_http.calls[0].kwargs["json"]["plan_id"] == "plan-large"


@pytest.mark.parametrize("status_code", [400, 422, 500, 503])
def test_errored_update_leaves_resource_untouched(client, broker_http, repository, broker, instance, status_code):
    broker_http.respond("PATCH", StubBrokerResponse(status_code, {"description": "nope"}))
    action = build_action(
        OperationType.UPDATE, instance, broker, client, repository,
        changes={"name": "renamed", "plan_id": "plan-large"},
    )

    outcome = action.execute()

    assert not outcome.done
    assert "nope" in outcome.detail
    unchanged = repository.get(instance.guid)
    assert unchanged.name == "orders-db"
    assert unchanged.plan_id == "plan-small"


def test_errored_delete_keeps_resource(client, broker_http, repository, broker, key):
    broker_http.respond("DELETE", StubBrokerResponse(500, {"description": "broker exploded"}))

    outcome = build_action(OperationType.DELETE, key, broker, client, repository).execute()

    assert not outcome.done
    assert repository.find(key.guid) is not None


@pytest.mark.parametrize("resource_name", ["instance", "key"])
def test_gone_counts_as_success_for_removal(client, broker_http, repository, broker, resource_name, request):
    resource = request.getfixturevalue(resource_name)
    broker_http.respond("DELETE", StubBrokerResponse(410, {}))

    outcome = build_action(OperationType.DELETE, resource, broker, client, repository).execute()

    assert outcome.done
    assert outcome.resource_deleted
    assert repository.find(resource.guid) is None


def test_gone_is_an_error_for_update(client, broker_http, repository, broker, instance):
    broker_http.respond("PATCH", StubBrokerResponse(410, {}))

    outcome = build_action(OperationType.UPDATE, instance, broker, client, repository,
                           changes={"name": "renamed"}).execute()

    assert not outcome.done
    assert repository.get(instance.guid).name == "orders-db"


def test_success_description_is_carried(client, broker_http, repository, broker, instance):
    broker_http.respond("PATCH", StubBrokerResponse(200, {"description": "resized"}))

    outcome = build_action(OperationType.UPDATE, instance, broker, client, repository).execute()

    assert outcome.description == "resized"


def test_non_text_description_is_ignored(client, broker_http, repository, broker, instance):
    broker_http.respond("PATCH", StubBrokerResponse(200, {"description": {"detail": "resized"}}))

    outcome = build_action(OperationType.UPDATE, instance, broker, client, repository).execute()

    assert outcome.done
    assert outcome.description is None
