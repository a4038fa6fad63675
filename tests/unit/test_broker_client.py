"""Tests for the broker HTTP client (app/core/broker/client.py)."""
import pytest
import requests

from app.core.broker import (
    BrokerClient,
    BrokerRejected,
    BrokerServerError,
    BrokerTimeout,
    BrokerUnreachable,
    BrokerVerb,
    ResultStatus,
)
from tests.conftest import StubBrokerResponse


@pytest.fixture()
def client():
    return BrokerClient(timeout=7, api_version="2.15")


def test_provision_request_shape(client, broker_http, broker, instance):
    broker_http.respond("PUT", StubBrokerResponse(201, {"dashboard_url": "https://dash"}))

    result = client.invoke(broker, instance, BrokerVerb.PROVISION, parameters={"size": 3})

    assert result.status is ResultStatus.SUCCESS
    assert result.body == {"dashboard_url": "https://dash"}
    call = broker_http.calls[0]
    assert call.method == "PUT"
    assert call.url == f"https://broker.example.test/v2/service_instances/{instance.guid}"
    assert call.kwargs["auth"] == ("broker-user", "broker-pass")
    assert call.kwargs["headers"]["X-Broker-API-Version"] == "2.15"
    assert call.kwargs["timeout"] == 7
    assert call.kwargs["json"] == {
        "service_id": "svc-postgres",
        "plan_id": "plan-small",
        "parameters": {"size": 3},
    }


def test_unbind_uses_binding_route_and_query(client, broker_http, broker, instance, key):
    client.invoke(broker, key, BrokerVerb.UNBIND)

    call = broker_http.calls[0]
    assert call.method == "DELETE"
    assert call.url.endswith(f"/v2/service_instances/{instance.guid}/service_bindings/{key.guid}")
    assert call.kwargs["params"] == {"service_id": "svc-postgres", "plan_id": "plan-small"}
    assert "json" not in call.kwargs


def test_update_sends_previous_values(client, broker_http, broker, instance):
    client.invoke(broker, instance, BrokerVerb.UPDATE, plan_id="plan-large")

    body = broker_http.calls[0].kwargs["json"]
    assert broker_http.calls[0].method == "PATCH"
    assert body["plan_id"] == "plan-large"
    assert body["previous_values"] == {"service_id": "svc-postgres", "plan_id": "plan-small"}


def test_bind_requires_owning_instance(client, broker, instance):
    with pytest.raises(ValueError):
        BrokerClient.path_for(instance, BrokerVerb.BIND)


@pytest.mark.parametrize("code", [200, 201, 202, 204])
def test_2xx_is_success(client, broker_http, broker, instance, code):
    broker_http.respond("DELETE", StubBrokerResponse(code))

    result = client.invoke(broker, instance, BrokerVerb.DEPROVISION)

    assert result.status is ResultStatus.SUCCESS
    assert result.status_code == code
    assert result.detail == ""


def test_410_is_gone(client, broker_http, broker, instance):
    broker_http.respond("DELETE", StubBrokerResponse(410, {}))

    result = client.invoke(broker, instance, BrokerVerb.DEPROVISION)

    assert result.status is ResultStatus.GONE
    assert result.error is None


@pytest.mark.parametrize("code", [500, 502, 503])
def test_5xx_is_retryable(client, broker_http, broker, instance, code):
    broker_http.respond("PUT", StubBrokerResponse(code, {"description": "backend down"}))

    result = client.invoke(broker, instance, BrokerVerb.PROVISION)

    assert result.status is ResultStatus.RETRYABLE
    assert isinstance(result.error, BrokerServerError)
    assert result.error.retryable
    assert "backend down" in result.detail


def test_4xx_is_failure_with_broker_description(client, broker_http, broker, instance):
    broker_http.respond("PUT", StubBrokerResponse(422, {"error": "AsyncRequired", "description": "plan invalid"}))

    result = client.invoke(broker, instance, BrokerVerb.PROVISION)

    assert result.status is ResultStatus.FAILURE
    assert isinstance(result.error, BrokerRejected)
    assert result.error.status_code == 422
    assert result.detail == "plan invalid"


def test_4xx_without_json_falls_back_to_text(client, broker_http, broker, instance):
    broker_http.respond("PUT", StubBrokerResponse(400, text="bad request body"))

    result = client.invoke(broker, instance, BrokerVerb.PROVISION)

    assert result.detail == "bad request body"
    assert result.body == {}


def test_timeout_is_retryable(client, broker_http, broker, instance):
    broker_http.respond("DELETE", requests.exceptions.ReadTimeout("slow"))

    result = client.invoke(broker, instance, BrokerVerb.DEPROVISION)

    assert result.status is ResultStatus.RETRYABLE
    assert isinstance(result.error, BrokerTimeout)
    assert "7 seconds" in result.detail


def test_connection_error_is_retryable(client, broker_http, broker, instance):
    broker_http.respond("DELETE", requests.exceptions.ConnectionError("refused"))

    result = client.invoke(broker, instance, BrokerVerb.DEPROVISION)

    assert result.status is ResultStatus.RETRYABLE
    assert isinstance(result.error, BrokerUnreachable)


def test_removal_verbs():
    assert BrokerVerb.DEPROVISION.is_removal
    assert BrokerVerb.UNBIND.is_removal
    assert not BrokerVerb.PROVISION.is_removal
    assert not BrokerVerb.BIND.is_removal
    assert not BrokerVerb.UPDATE.is_removal
