"""
HTTP surface: health, enqueue and the cron-triggered outbox drain.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from drawings_worker.core.database import build_session_factory, create_tables
from drawings_worker.jobs.context import JobContext
from drawings_worker.factory import create_app
from drawings_worker.models.job import JobStatus, OutboxJob

CRON_SECRET = "cron-s3cret"


@pytest.fixture
def api_context(settings, store, pdf_tools, notifier) -> JobContext:
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    asyncio.run(create_tables(engine))
    return JobContext(
        settings=settings,
        session_factory=build_session_factory(engine),
        store=store,
        pdf_tools=pdf_tools,
        notifier=notifier,
    )


@pytest.fixture
def client(api_context) -> TestClient:
    return TestClient(create_app(api_context))


@pytest.fixture
def secured_client(api_context) -> TestClient:
    api_context.settings = api_context.settings.model_copy(update={"cron_secret": CRON_SECRET})
    return TestClient(create_app(api_context))


def _jobs(ctx: JobContext) -> list[OutboxJob]:
    async def _load():
        async with ctx.session_factory() as db:
            return (await db.execute(select(OutboxJob))).scalars().all()

    return asyncio.run(_load())


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestEnqueue:

    def test_enqueue_job(self, client, api_context):
        response = client.post("/v1/jobs", json={
            "org_id": "org-1",
            "job_type": "process_drawing_set",
            "payload": {"drawingSetId": "set-1", "projectId": "p-1", "sourceFileId": "f-1"},
        })
        assert response.status_code == 201
        body = response.json()
        assert body["job_type"] == "process_drawing_set"
        assert body["status"] == "pending"

        (job,) = _jobs(api_context)
        assert job.id == body["id"]
        assert job.payload["drawing_set_id"] == "set-1"
        assert job.payload["version"] == 1

    def test_invalid_payload(self, client, api_context):
        response = client.post("/v1/jobs", json={
            "org_id": "org-1",
            "job_type": "generate_drawing_tiles",
            "payload": {},
        })
        assert response.status_code == 422
        assert "sheet_version_id" in response.json()["detail"]
        assert _jobs(api_context) == []

    def test_unknown_job_type(self, client):
        response = client.post("/v1/jobs", json={
            "org_id": "org-1", "job_type": "send_invoice", "payload": {},
        })
        assert response.status_code == 422


class TestProcessOutbox:

    def test_empty_outbox(self, client):
        response = client.post("/v1/jobs/process-outbox")
        assert response.status_code == 200
        assert response.json() == {"processed": 0, "failed": 0}

    def test_drains_one_batch(self, client, api_context):
        client.post("/v1/jobs", json={
            "org_id": "org-1",
            "job_type": "generate_drawing_tiles",
            "payload": {"sheetVersionId": "deleted-version"},
        })

        response = client.post("/v1/jobs/process-outbox")

        assert response.json() == {"processed": 1, "failed": 0}
        (job,) = _jobs(api_context)
        assert job.status == JobStatus.COMPLETED.value
        assert job.last_error.startswith("skipped: ")


class TestCronSecret:

    def test_missing_token(self, secured_client):
        response = secured_client.post("/v1/jobs/process-outbox")
        assert response.status_code == 401

    def test_wrong_token(self, secured_client):
        response = secured_client.post(
            "/v1/jobs/process-outbox", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    def test_valid_token(self, secured_client):
        response = secured_client.post(
            "/v1/jobs/process-outbox", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )
        assert response.status_code == 200

    def test_health_needs_no_token(self, secured_client):
        assert secured_client.get("/health").status_code == 200
