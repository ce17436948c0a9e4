"""
HTTP tests for the concern, workload, escalation and triage routes.
"""

import httpx
import pytest
from fastapi import FastAPI

from concern_desk.concerns.interfaces import concern_router, escalation_router, workload_router
from concern_desk.shared.api.middleware import CORRELATION_HEADER, install
from concern_desk.triage.interfaces import triage_router


@pytest.fixture
def app(orchestrator) -> FastAPI:
    app = FastAPI()
    install(app)
    app.include_router(concern_router)
    app.include_router(workload_router)
    app.include_router(escalation_router)
    app.include_router(triage_router)
    app.state.orchestrator = orchestrator
    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def submit(client, directory, subject="My tuition payment has an issue", **fields):
    payload = {"student_id": directory.student, "subject": subject, "description": subject}
    payload.update(fields)
    return await client.post("/concerns", json=payload)


class TestConcernRoutes:
    async def test_submit_concern(self, client, directory):
        response = await submit(client, directory)

        assert response.status_code == 201
        body = response.json()
        assert body["concern"]["reference_number"] == "CNR2025030001"
        assert body["concern"]["department_id"] == directory.finance
        assert body["concern"]["status"] == "pending"
        assert body["priority_analysis"]["priority"] == "high"
        assert body["assignment"] == {
            "status": "assigned",
            "handler_id": directory.finance_staff_1,
            "handler_name": "Paolo Lim",
            "cross_department": False,
            "message": body["assignment"]["message"],
        }

    async def test_get_concern_and_history(self, client, directory):
        concern_id = (await submit(client, directory)).json()["concern"]["id"]

        response = await client.get(f"/concerns/{concern_id}")
        assert response.status_code == 200
        assert response.json()["assigned_to"] == directory.finance_staff_1

        history = (await client.get(f"/concerns/{concern_id}/history")).json()
        assert {"created", "assignment"} <= {event["event_type"] for event in history}

    async def test_unknown_concern_is_404(self, client, directory):
        response = await client.get("/concerns/missing")

        assert response.status_code == 404
        assert response.json()["error_type"] == "ResourceNotFoundException"

    async def test_blank_subject_is_422(self, client, directory):
        response = await submit(client, directory, subject="   ")

        assert response.status_code == 422

    async def test_unknown_department_is_422(self, client, directory):
        response = await submit(client, directory, department_id="dept-missing")

        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationException"

    async def test_staff_approval_is_403(self, client, directory):
        concern_id = (await submit(client, directory)).json()["concern"]["id"]

        response = await client.post(
            f"/concerns/{concern_id}/approve", json={"actor_id": directory.finance_staff_1}
        )

        assert response.status_code == 403
        assert response.json()["details"]["actor_id"] == directory.finance_staff_1

    async def test_approve_twice_is_400(self, client, directory):
        concern_id = (await submit(client, directory)).json()["concern"]["id"]
        first = await client.post(f"/concerns/{concern_id}/approve", json={"actor_id": directory.finance_head})

        second = await client.post(f"/concerns/{concern_id}/approve", json={"actor_id": directory.admin})

        assert first.status_code == 200
        assert first.json()["status"] == "approved"
        assert second.status_code == 400

    async def test_resolution_flow(self, client, directory):
        concern_id = (await submit(client, directory)).json()["concern"]["id"]
        await client.post(f"/concerns/{concern_id}/approve", json={"actor_id": directory.finance_head})
        await client.post(
            f"/concerns/{concern_id}/status",
            json={"actor_id": directory.finance_staff_1, "status": "staff_resolved", "note": "Posted"},
        )

        response = await client.post(
            f"/concerns/{concern_id}/confirm", json={"student_id": directory.student, "rating": 4}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "student_confirmed"
        assert response.json()["rating"] == 4

    async def test_correlation_id_is_echoed(self, client):
        response = await client.get("/concerns/missing", headers={CORRELATION_HEADER: "req-42"})

        assert response.headers[CORRELATION_HEADER] == "req-42"
        assert response.json()["correlation_id"] == "req-42"


class TestOperationsRoutes:
    async def test_workload_analysis(self, client, directory):
        response = await client.get("/workload/analysis")

        assert response.status_code == 200
        body = response.json()
        assert body["overloaded"] == []
        assert body["system_utilization"] == 0.0
        assert directory.finance in [d["department_id"] for d in body["departments"]]

    async def test_handler_workload(self, client, directory):
        await submit(client, directory)

        response = await client.get(f"/workload/handlers/{directory.finance_staff_1}")

        assert response.status_code == 200
        assert response.json()["workload"] == 1
        assert response.json()["is_overloaded"] is False

    async def test_proposals_for_unknown_department(self, client):
        response = await client.get("/workload/departments/dept-missing/proposals")

        assert response.status_code == 404

    async def test_escalation_sweep(self, client, directory, clock):
        await submit(client, directory, subject="Urgent: tuition payment failed")
        clock.advance(hours=7)

        response = await client.post("/escalation/sweep")

        assert response.status_code == 200
        body = response.json()
        assert body["evaluated"] == 1
        assert [entry["level"] for entry in body["escalated"]] == ["staff"]

    async def test_escalation_stats(self, client, directory, clock):
        await submit(client, directory, subject="Urgent: tuition payment failed")
        clock.advance(hours=7)
        await client.post("/escalation/sweep")

        response = await client.get("/escalation/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["total_escalated"] == 1
        assert body["escalated_today"] == 1
        assert body["by_level"]["staff"] == {"count": 1, "rate": 1.0}

    async def test_emergency(self, client, directory):
        concern_id = (await submit(client, directory)).json()["concern"]["id"]

        response = await client.post(
            f"/concerns/{concern_id}/emergency", json={"reason": "Student reported feeling unsafe"}
        )

        assert response.status_code == 200
        assert response.json()["assigned"] is True
        assert response.json()["handler_id"] == directory.housing_staff

    async def test_classify_preview(self, client):
        response = await client.post("/triage/classify", json={"subject": "URGENT: security threat near dorm"})

        assert response.status_code == 200
        body = response.json()
        assert body["priority"] == "urgent"
        assert body["category"] == "safety"
        assert body["department_hint"] == "CAMPUS_SECURITY"
