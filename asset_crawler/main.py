import asyncio
import signal

from loguru import logger

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from asset_crawler.api.job_routes import start_api_server
from asset_crawler.models import JobConfig
from asset_crawler.orchestrator import JobOrchestrator
from asset_crawler.utils.config_loader import load_config
from asset_crawler.utils.logger import setup_logger


# -------------------------------
# PROGRESS LOGGING
# -------------------------------
def log_progress(event) -> None:
    if event.status.is_terminal:
        return
    logger.bind(job_id=event.job_id).debug(
        f"progress: discovered={event.discovered} downloaded={event.downloaded} "
        f"failed={event.failed} skipped={event.skipped}"
    )


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    config = load_config()
    setup_logger(config.log_level, config.log_dir)

    logger.info("Starting asset crawler service...")

    defaults = JobConfig.from_config(config)
    orchestrator = JobOrchestrator(defaults, job_retention=config.job_retention)
    orchestrator.subscribe(log_progress)

    # ---- API + Metrics Server ----
    runner, _site = await start_api_server(orchestrator, host=config.host, port=config.port)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(
        f"Listening on {config.host}:{config.port}; saving under {defaults.save_root} "
        f"(workers={defaults.max_concurrent}, rate={defaults.rate_limit_per_interval}/"
        f"{defaults.rate_interval_seconds:g}s, timeout={defaults.timeout_millis}ms)"
    )

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down; cancelling running jobs...")
        await orchestrator.shutdown()
        await runner.shutdown()
        await runner.cleanup()


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
