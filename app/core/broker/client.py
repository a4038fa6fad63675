"""Low-level HTTP client for service brokers (Open Service Broker API v2).

Handles authentication, route composition and response classification.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from .exceptions import (
    BrokerError,
    BrokerRejected,
    BrokerServerError,
    BrokerTimeout,
    BrokerUnreachable,
)

REQUEST_TIMEOUT = 60
BROKER_API_VERSION = "2.15"

logger = logging.getLogger(__name__)


class BrokerVerb(str, enum.Enum):
    PROVISION = "provision"
    DEPROVISION = "deprovision"
    BIND = "bind"
    UNBIND = "unbind"
    UPDATE = "update"

    @property
    def is_removal(self) -> bool:
        """Verbs for which 410 Gone means the work is already done."""
        return self in (BrokerVerb.DEPROVISION, BrokerVerb.UNBIND)


class ResultStatus(str, enum.Enum):
    SUCCESS = "success"
    GONE = "gone"
    RETRYABLE = "retryable"
    FAILURE = "failure"


@dataclass
class BrokerResult:
    """Normalized outcome of one broker request."""

    status: ResultStatus
    status_code: Optional[int] = None
    body: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BrokerError] = None

    @property
    def detail(self) -> str:
        """Human-readable failure detail (empty for success)."""
        if self.error is None:
            return ""
        if isinstance(self.error, BrokerRejected):
            return self.error.description
        return str(self.error)


_METHODS = {
    BrokerVerb.PROVISION: "PUT",
    BrokerVerb.UPDATE: "PATCH",
    BrokerVerb.DEPROVISION: "DELETE",
    BrokerVerb.BIND: "PUT",
    BrokerVerb.UNBIND: "DELETE",
}


class BrokerClient:
    """HTTP client for service brokers.

    Features:
    - Basic authentication with broker-scoped credentials
    - Bounded request timeout; an unreachable broker and a slow one look the same
    - Never raises for HTTP outcomes: everything becomes a BrokerResult

    Usage:
        client = BrokerClient(timeout=30)
        result = client.invoke(broker, service_key, BrokerVerb.UNBIND)
        if result.status is ResultStatus.SUCCESS:
            ...
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT, api_version: str = BROKER_API_VERSION):
        self.timeout = timeout
        self.api_version = api_version

    def invoke(
        self,
        broker,
        resource,
        verb: BrokerVerb,
        *,
        parameters: Optional[Dict[str, Any]] = None,
        plan_id: Optional[str] = None,
    ) -> BrokerResult:
        """Issue one request against the broker for ``resource``.

        Args:
            broker: ServiceBroker (broker_url, auth_username, auth_password)
            resource: ServiceResource the request is about
            verb: Broker operation
            parameters: Arbitrary parameters for provision/update/bind
            plan_id: Target plan for update (defaults to the resource's plan)

        Returns:
            BrokerResult
        """
        path = self.path_for(resource, verb)
        url = f"{broker.broker_url.rstrip('/')}{path}"
        method = _METHODS[verb]

        request_kwargs: Dict[str, Any] = {}
        if method == "DELETE":
            request_kwargs["params"] = {"service_id": resource.service_id, "plan_id": resource.plan_id}
        else:
            request_kwargs["json"] = self._body_for(resource, verb, parameters, plan_id)

        logger.info(f"Broker {broker.name}: {method} {path} ({verb.value})")
        try:
            resp = requests.request(
                method,
                url,
                auth=(broker.auth_username, broker.auth_password),
                headers={"X-Broker-API-Version": self.api_version, "Accept": "application/json"},
                timeout=self.timeout,
                **request_kwargs,
            )
        except requests.exceptions.Timeout as exc:
            logger.warning(f"Broker {broker.name} timed out after {self.timeout}s: {exc}")
            return BrokerResult(
                ResultStatus.RETRYABLE,
                error=BrokerTimeout(f"The service broker did not respond within {self.timeout} seconds", url),
            )
        except requests.exceptions.RequestException as exc:
            logger.warning(f"Broker {broker.name} unreachable: {exc}")
            return BrokerResult(
                ResultStatus.RETRYABLE,
                error=BrokerUnreachable("The service broker could not be reached", url),
            )

        return self._classify(resp, url)

    @staticmethod
    def path_for(resource, verb: BrokerVerb) -> str:
        """Compose the broker route for a verb."""
        if verb in (BrokerVerb.BIND, BrokerVerb.UNBIND):
            if not resource.parent_guid:
                raise ValueError(f"{verb.value} needs a service key with an owning instance")
            return f"/v2/service_instances/{resource.parent_guid}/service_bindings/{resource.guid}"
        return f"/v2/service_instances/{resource.guid}"

    @staticmethod
    def _body_for(resource, verb: BrokerVerb, parameters, plan_id) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "service_id": resource.service_id,
            "plan_id": plan_id or resource.plan_id,
        }
        if parameters:
            body["parameters"] = parameters
        if verb is BrokerVerb.UPDATE:
            body["previous_values"] = {"service_id": resource.service_id, "plan_id": resource.plan_id}
        return body

    @staticmethod
    def _classify(resp: requests.Response, url: str) -> BrokerResult:
        body = _json_body(resp)
        code = resp.status_code

        if 200 <= code < 300:
            return BrokerResult(ResultStatus.SUCCESS, code, body)
        if code == 410:
            return BrokerResult(ResultStatus.GONE, code, body)
        if code >= 500:
            return BrokerResult(
                ResultStatus.RETRYABLE,
                code,
                body,
                BrokerServerError(code, _error_detail(resp, body), url),
            )
        return BrokerResult(
            ResultStatus.FAILURE,
            code,
            body,
            BrokerRejected(code, _error_detail(resp, body), url),
        )


def _json_body(resp: requests.Response) -> Dict[str, Any]:
    if not resp.content:
        return {}
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_detail(resp: requests.Response, body: Dict[str, Any]) -> str:
    for key in ("description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    text = (resp.text or "").strip()
    if text:
        return text
    return f"The service broker returned status {resp.status_code}"
