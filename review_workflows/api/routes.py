"""
Control API routes.

Trigger workflows, deliver signals, inspect and cancel instances.
"""

import logging

from flask import Flask, Blueprint, current_app, request, jsonify

from review_workflows.services import (
    DuplicateInstanceError,
    EngineError,
    InstanceNotFoundError,
    SignalDispatcher,
    SignalMismatchError,
    UnknownWorkflowTypeError,
    WorkflowEngine,
)

logger = logging.getLogger(__name__)

workflows_bp = Blueprint("workflows", __name__)


def get_engine() -> WorkflowEngine:
    """Get the engine from the app runtime."""
    return current_app.config["RUNTIME"].engine


def get_dispatcher() -> SignalDispatcher:
    """Get the signal dispatcher from the app runtime."""
    return current_app.config["RUNTIME"].dispatcher


def _json_object():
    """Return the request body if it is a JSON object, else None."""
    data = request.get_json(silent=True)
    if data is None and not request.get_data():
        return {}
    if not isinstance(data, dict):
        return None
    return data


@workflows_bp.route("/trigger/<workflow_name>", methods=["POST"])
def trigger_workflow(workflow_name: str):
    """
    Start a workflow for a submission.

    The body is the workflow payload, e.g. for content-review:
    {"contentId": "...", "userId": "...", "title": "...", "contentType": "article"}
    """
    payload = _json_object()
    if payload is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        instance = get_engine().create(workflow_name, payload)
    except UnknownWorkflowTypeError as e:
        return jsonify({"error": str(e)}), 400
    except DuplicateInstanceError as e:
        return jsonify({"workflowId": e.existing.id, "status": "already_running"}), 200
    except EngineError as e:
        logger.error(f"Trigger of {workflow_name} failed: {e}")
        return jsonify({"error": str(e), "workflowId": e.instance_id}), 500

    return jsonify({"workflowId": instance.id, "status": "started"}), 200


@workflows_bp.route("/signal/<workflow_id>/<event_name>", methods=["POST"])
def signal_workflow(workflow_id: str, event_name: str):
    """Deliver an event (e.g. approval-decision) to a waiting instance."""
    payload = _json_object()
    if payload is None:
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        get_dispatcher().signal(workflow_id, event_name, payload)
    except (InstanceNotFoundError, SignalMismatchError) as e:
        return jsonify({"error": str(e)}), 404
    except EngineError as e:
        logger.error(f"Signal {event_name} to {workflow_id} failed: {e}")
        return jsonify({"error": str(e), "workflowId": workflow_id}), 500

    return jsonify({"success": True}), 200


@workflows_bp.route("/status/<workflow_id>", methods=["GET"])
def get_status(workflow_id: str):
    try:
        instance = get_engine().get(workflow_id)
    except InstanceNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(instance_to_dict(instance)), 200


@workflows_bp.route("/cancel/<workflow_id>", methods=["POST"])
def cancel_workflow(workflow_id: str):
    try:
        get_engine().cancel(workflow_id)
    except InstanceNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"success": True}), 200


@workflows_bp.route("/active", methods=["GET"])
def list_active():
    """
    List non-terminal instances.

    Query params:
    - type: Workflow name or alias to filter by
    - limit: Max results (default 100)
    """
    engine = get_engine()
    workflow_type = None
    type_name = request.args.get("type")
    if type_name:
        try:
            workflow_type = engine.catalog.resolve(type_name).workflow_type
        except UnknownWorkflowTypeError as e:
            return jsonify({"error": str(e)}), 400

    limit = int(request.args.get("limit", 100))
    instances = engine.list_active(workflow_type=workflow_type, limit=limit)

    return jsonify({
        "workflows": [instance_to_dict(i) for i in instances],
        "count": len(instances),
    }), 200


def instance_to_dict(instance) -> dict:
    """Convert WorkflowInstance to API response dict."""
    pending = instance.pending_wait
    return {
        "id": instance.id,
        "type": instance.workflow_type.value,
        "submissionId": instance.submission_id,
        "status": instance.status.value,
        "output": instance.output,
        "error": instance.error,
        "waitingOn": pending.event_name if pending else None,
        "deadline": pending.deadline.isoformat() if pending else None,
        "steps": [record.step_name for record in instance.step_log],
        "createdAt": instance.created_at.isoformat(),
        "updatedAt": instance.updated_at.isoformat(),
        "completedAt": instance.completed_at.isoformat() if instance.completed_at else None,
    }


def register_routes(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    app.register_blueprint(workflows_bp)
    logger.info("Routes registered")
