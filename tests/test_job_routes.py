import pytest
from aiohttp.test_utils import TestClient, TestServer

from asset_crawler.api.job_routes import create_app
from asset_crawler.models import JobStatus
from asset_crawler.orchestrator import JobOrchestrator

SEED = "https://site.test/"


@pytest.fixture
def orchestrator(site, job_config):
    return JobOrchestrator(job_config(), transport=site.transport())


@pytest.mark.asyncio
async def test_submit_and_inspect_job(site, orchestrator):
    site.add(SEED, "<img src='/a.png'><img src='/b.png'>")
    site.add("https://site.test/a.png", b"a", content_type="image/png")

    async with TestClient(TestServer(create_app(orchestrator))) as client:
        resp = await client.post("/api/jobs", json={"url": SEED, "maxConcurrent": 2})
        assert resp.status == 202
        job_id = (await resp.json())["jobId"]

        await orchestrator.wait(job_id, timeout=5)

        resp = await client.get(f"/api/jobs/{job_id}")
        assert resp.status == 200
        job = await resp.json()
        assert job["status"] == JobStatus.COMPLETED.value
        assert job["config"]["max_concurrent"] == 2
        assert (job["discovered"], job["downloaded"], job["failed"]) == (2, 1, 1)
        assert job["completed_at"] is not None

        resp = await client.get(f"/api/jobs/{job_id}/resources")
        resources = await resp.json()
        assert sorted(r["outcome"] for r in resources) == ["failed", "success"]
        assert {r["kind"] for r in resources} == {"image"}

        resp = await client.get("/api/jobs")
        assert [j["id"] for j in await resp.json()] == [job_id]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"url": "ftp://site.test/"},
        {"url": SEED, "maxConcurrent": 0},
        {"url": SEED, "timeoutMillis": "later"},
        ["not", "an", "object"],
    ],
)
async def test_submit_rejects_invalid_requests(orchestrator, body):
    async with TestClient(TestServer(create_app(orchestrator))) as client:
        resp = await client.post("/api/jobs", json=body)

        assert resp.status == 400
        assert (await resp.json())["error"] == "InvalidInput"


@pytest.mark.asyncio
async def test_submit_rejects_malformed_json(orchestrator):
    async with TestClient(TestServer(create_app(orchestrator))) as client:
        resp = await client.post("/api/jobs", data="{not json", headers={"Content-Type": "application/json"})

        assert resp.status == 400


@pytest.mark.asyncio
async def test_unknown_job_is_404(orchestrator):
    async with TestClient(TestServer(create_app(orchestrator))) as client:
        for method, path in [
            ("GET", "/api/jobs/missing"),
            ("GET", "/api/jobs/missing/resources"),
            ("DELETE", "/api/jobs/missing"),
        ]:
            resp = await client.request(method, path)
            assert resp.status == 404
            assert (await resp.json())["error"] == "NotFound"


@pytest.mark.asyncio
async def test_delete_cancels_running_job(site, orchestrator):
    site.hang(SEED)

    async with TestClient(TestServer(create_app(orchestrator))) as client:
        resp = await client.post("/api/jobs", json={"url": SEED, "timeoutMillis": 10_000})
        job_id = (await resp.json())["jobId"]

        resp = await client.delete(f"/api/jobs/{job_id}")
        assert resp.status == 200
        assert await resp.json() == {"ok": True}

        snapshot = await orchestrator.wait(job_id, timeout=2)
        assert snapshot.status is JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_crawler_metrics(orchestrator):
    async with TestClient(TestServer(create_app(orchestrator))) as client:
        resp = await client.get("/metrics")

        assert resp.status == 200
        assert "asset_crawler_requests_total" in await resp.text()
