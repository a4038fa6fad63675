"""Service instance and service key endpoints.

Thin JSON surface over LifecycleManager. Mutations answer 201/200 when the
operation already finished (inline jobs) and 202 while it is still in
progress; deletes answer 204. Errors are mapped in app.api.errors.

Routes (mounted under /v2):
    POST   /service_instances
    GET    /service_instances/<guid>
    PATCH  /service_instances/<guid>
    DELETE /service_instances/<guid>
    POST   /service_keys
    GET    /service_keys/<guid>
    DELETE /service_keys/<guid>
"""
from __future__ import annotations
import logging
from typing import Any, Dict

from flask import Blueprint, abort, current_app, jsonify, request

from app.core.lifecycle.exceptions import UnknownResourceError, ValidationError
from app.core.lifecycle.manager import LifecycleManager, OperationHandle

bp = Blueprint("lifecycle", __name__)

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor"


def _manager() -> LifecycleManager:
    return current_app.extensions["lifecycle"].manager


def _actor() -> str:
    return request.headers.get(ACTOR_HEADER, "").strip() or "api"


def _json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Request body must be a JSON object")
    return payload


def _parameters(payload: Dict[str, Any]):
    parameters = payload.get("parameters")
    if parameters is not None and not isinstance(parameters, dict):
        raise ValidationError("parameters", "parameters must be an object")
    return parameters


def _accepted(handle: OperationHandle, done_status: int):
    body = _manager().get_resource_with_operation(handle.resource_guid)
    return jsonify(body), (done_status if handle.done else 202)


def _get_of_type(guid: str, is_key: bool) -> dict:
    resource = _manager().repository.get(guid)
    if resource.is_key != is_key:
        raise UnknownResourceError(guid, "service key" if is_key else "service instance")
    return _manager().get_resource_with_operation(guid)


# ─────────────────────────────────────────────────────────────────────────────
# Service instances
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/service_instances", methods=["POST"])
def create_service_instance():
    payload = _json_payload()
    handle = _manager().create_service_instance(
        payload.get("name", ""),
        payload.get("broker_guid", ""),
        payload.get("service_id", ""),
        payload.get("plan_id", ""),
        _parameters(payload),
        description=payload.get("description", ""),
        actor=_actor(),
    )
    return _accepted(handle, 201)


@bp.route("/service_instances/<guid>", methods=["GET"])
def get_service_instance(guid: str):
    return jsonify(_get_of_type(guid, is_key=False)), 200


@bp.route("/service_instances/<guid>", methods=["PATCH"])
def update_service_instance(guid: str):
    payload = _json_payload()
    _get_of_type(guid, is_key=False)
    handle = _manager().update_service_instance(
        guid,
        name=payload.get("name"),
        plan_id=payload.get("plan_id"),
        parameters=_parameters(payload),
        description=payload.get("description", ""),
        actor=_actor(),
    )
    return _accepted(handle, 200)


@bp.route("/service_instances/<guid>", methods=["DELETE"])
def delete_service_instance(guid: str):
    _manager().delete_service_instance(guid, actor=_actor())
    return ("", 204)


# ─────────────────────────────────────────────────────────────────────────────
# Service keys
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/service_keys", methods=["POST"])
def create_service_key():
    payload = _json_payload()
    handle = _manager().create_service_key(
        payload.get("name", ""),
        payload.get("service_instance_guid", ""),
        _parameters(payload),
        description=payload.get("description", ""),
        actor=_actor(),
    )
    return _accepted(handle, 201)


@bp.route("/service_keys/<guid>", methods=["GET"])
def get_service_key(guid: str):
    return jsonify(_get_of_type(guid, is_key=True)), 200


@bp.route("/service_keys/<guid>", methods=["DELETE"])
def delete_service_key(guid: str):
    _manager().delete_service_key(guid, actor=_actor())
    return ("", 204)
