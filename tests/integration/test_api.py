"""
Integration tests for API endpoints.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import patch


def post(client, path, body=None):
    return client.post(path, data=json.dumps(body or {}), content_type="application/json")


class TestTriggerEndpoint:
    """Tests for POST /trigger/<name>."""

    def test_trigger_starts_workflow(self, client, content_payload):
        response = post(client, "/trigger/content-review", content_payload)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "started"
        assert data["workflowId"].startswith("content_review-")

    def test_trigger_unknown_workflow(self, client):
        response = post(client, "/trigger/onboarding", {"userId": "u1"})

        assert response.status_code == 400
        assert "onboarding" in json.loads(response.data)["error"]

    def test_trigger_non_object_body(self, client):
        response = client.post(
            "/trigger/content-review",
            data=json.dumps(["not", "an", "object"]),
            content_type="application/json",
        )

        assert response.status_code == 400

    def test_trigger_missing_submission_id(self, client):
        response = post(client, "/trigger/content-review", {"userId": "u1"})

        assert response.status_code == 400
        assert "contentId" in json.loads(response.data)["error"]

    def test_trigger_twice_returns_existing(self, client, content_payload):
        first = json.loads(post(client, "/trigger/content-review", content_payload).data)

        response = post(client, "/trigger/content-review", content_payload)

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data == {"workflowId": first["workflowId"], "status": "already_running"}

    def test_trigger_step_failure(self, client, runtime, content_payload):
        with patch.object(runtime.submissions, "update_submission", side_effect=RuntimeError("db down")):
            response = post(client, "/trigger/content-review", content_payload)

        assert response.status_code == 500
        data = json.loads(response.data)
        assert "initialize" in data["error"]

        status = json.loads(client.get(f"/status/{data['workflowId']}").data)
        assert status["status"] == "failed"


class TestSignalEndpoint:

    def test_signal_completes_workflow(self, client, content_payload):
        workflow_id = json.loads(post(client, "/trigger/content-review", content_payload).data)["workflowId"]

        response = post(client, f"/signal/{workflow_id}/approval-decision", {
            "approved": True, "reviewerId": "r1",
        })

        assert response.status_code == 200
        assert json.loads(response.data) == {"success": True}

        status = json.loads(client.get(f"/status/{workflow_id}").data)
        assert status["status"] == "completed"
        assert status["output"] == {"status": "published", "contentId": "content-1"}

    def test_signal_unknown_instance(self, client):
        response = post(client, "/signal/content_review-" + "0" * 32 + "/approval-decision", {})

        assert response.status_code == 404

    def test_signal_garbage_id(self, client):
        response = post(client, "/signal/not-an-id/approval-decision", {})

        assert response.status_code == 404

    def test_signal_wrong_event(self, client, verification_payload):
        workflow_id = json.loads(
            post(client, "/trigger/business-verification", verification_payload).data
        )["workflowId"]

        response = post(client, f"/signal/{workflow_id}/approval-decision", {"approved": True})

        assert response.status_code == 404

    def test_signal_step_failure_after_resume(self, client, runtime, listing_payload):
        workflow_id = json.loads(post(client, "/trigger/listing-review", listing_payload).data)["workflowId"]

        with patch.object(runtime.queue, "queue_points_award", side_effect=RuntimeError("redis down")):
            response = post(client, f"/signal/{workflow_id}/approval-decision", {"approved": True})

        assert response.status_code == 500
        assert json.loads(response.data)["workflowId"] == workflow_id


class TestStatusAndCancel:

    def test_status_of_waiting_instance(self, client, listing_payload):
        workflow_id = json.loads(post(client, "/trigger/listing-review", listing_payload).data)["workflowId"]

        response = client.get(f"/status/{workflow_id}")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["id"] == workflow_id
        assert data["status"] == "waiting"
        assert data["waitingOn"] == "approval-decision"
        assert data["output"] is None
        assert data["error"] is None

    def test_status_unknown(self, client):
        assert client.get("/status/nope").status_code == 404

    def test_cancel(self, client, listing_payload):
        workflow_id = json.loads(post(client, "/trigger/listing-review", listing_payload).data)["workflowId"]

        response = post(client, f"/cancel/{workflow_id}")

        assert response.status_code == 200
        assert json.loads(client.get(f"/status/{workflow_id}").data)["status"] == "cancelled"

        # Terminal instances accept nothing further
        assert post(client, f"/cancel/{workflow_id}").status_code == 404
        assert post(client, f"/signal/{workflow_id}/approval-decision", {"approved": True}).status_code == 404

    def test_cancel_unknown(self, client):
        assert post(client, "/cancel/nope").status_code == 404


class TestActiveEndpoint:

    def test_lists_non_terminal_instances(self, client, content_payload, listing_payload):
        post(client, "/trigger/content-review", content_payload)
        post(client, "/trigger/listing-review", listing_payload)

        data = json.loads(client.get("/active").data)
        assert data["count"] == 2

        filtered = json.loads(client.get("/active?type=listing-review").data)
        assert filtered["count"] == 1
        assert filtered["workflows"][0]["type"] == "listing_review"

    def test_unknown_type_filter(self, client):
        assert client.get("/active?type=nope").status_code == 400


class TestHealthEndpoint:

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data == {"status": "healthy", "database": "healthy", "redis": "healthy"}

    def test_unhealthy_redis(self, client, runtime):
        with patch.object(runtime.queue, "health_check", return_value=False):
            response = client.get("/health")

        assert response.status_code == 503
        assert json.loads(response.data)["redis"] == "unhealthy"


class TestTimeoutThroughApi:

    def test_sweep_then_status(self, client, runtime, verification_payload):
        workflow_id = json.loads(
            post(client, "/trigger/business-verification", verification_payload).data
        )["workflowId"]

        runtime.engine.sweep_expired(now=datetime.utcnow() + timedelta(days=2))

        data = json.loads(client.get(f"/status/{workflow_id}").data)
        assert data["status"] == "completed"
        assert data["output"]["status"] == "payment_timeout"
