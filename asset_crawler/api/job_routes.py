from aiohttp import web
from loguru import logger

from asset_crawler.errors import CrawlError, InvalidInput, NotFound
from asset_crawler.monitoring.metrics_server import metrics_handler
from asset_crawler.orchestrator import JobOrchestrator

ORCHESTRATOR_KEY = web.AppKey("orchestrator", JobOrchestrator)

# request body key -> JobConfig field; the save root stays a server-side setting
API_FIELDS = {
    "maxConcurrent": "max_concurrent",
    "rateLimitPerInterval": "rate_limit_per_interval",
    "timeoutMillis": "timeout_millis",
}


def _error(status: int, exc: CrawlError) -> web.Response:
    return web.json_response({"error": exc.kind, "message": str(exc)}, status=status)


async def submit_job(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        body = await request.json()
    except ValueError:
        return _error(400, InvalidInput("Request body must be a JSON object"))
    if not isinstance(body, dict):
        return _error(400, InvalidInput("Request body must be a JSON object"))

    overrides = {field: body[key] for key, field in API_FIELDS.items() if key in body}
    try:
        job_id = await orchestrator.submit(body.get("url"), overrides)
    except InvalidInput as exc:
        logger.info(f"Rejected job submission: {exc}")
        return _error(400, exc)

    return web.json_response({"jobId": job_id}, status=202)


async def list_jobs(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    return web.json_response([snapshot.to_dict() for snapshot in orchestrator.jobs()])


async def get_job(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        snapshot = orchestrator.status(request.match_info["job_id"])
    except NotFound as exc:
        return _error(404, exc)
    return web.json_response(snapshot.to_dict())


async def get_job_resources(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        records = orchestrator.records(request.match_info["job_id"])
    except NotFound as exc:
        return _error(404, exc)
    return web.json_response([record.to_dict() for record in records])


async def cancel_job(request: web.Request) -> web.Response:
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        await orchestrator.cancel(request.match_info["job_id"])
    except NotFound as exc:
        return _error(404, exc)
    return web.json_response({"ok": True})


def create_app(orchestrator: JobOrchestrator) -> web.Application:
    app = web.Application()
    app[ORCHESTRATOR_KEY] = orchestrator
    app.router.add_post("/api/jobs", submit_job)
    app.router.add_get("/api/jobs", list_jobs)
    app.router.add_get("/api/jobs/{job_id}", get_job)
    app.router.add_get("/api/jobs/{job_id}/resources", get_job_resources)
    app.router.add_delete("/api/jobs/{job_id}", cancel_job)
    app.router.add_get("/metrics", metrics_handler)
    return app


async def start_api_server(orchestrator: JobOrchestrator, host: str = "0.0.0.0", port: int = 3000):
    app = create_app(orchestrator)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    return runner, site
