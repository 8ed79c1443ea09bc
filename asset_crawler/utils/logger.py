from loguru import logger
import os

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | job={extra[job_id]} | {message}"

_logger_initialized = False


def setup_logger(log_level: str = "INFO", log_dir: str | None = "/var/log/crawler"):
    """Install file + console sinks once; later calls only return the logger."""
    global _logger_initialized

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"job_id": "-"})

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            logger.add(
                os.path.join(log_dir, "crawler.log"),
                rotation="10 MB",
                retention="7 days",
                level=log_level,
                format=LOG_FORMAT,
                enqueue=True,
            )
        logger.add(
            lambda msg: print(msg, end=""),
            colorize=True,
            level=log_level,
            format=LOG_FORMAT,
        )

        _logger_initialized = True

    return logger


def job_logger(job_id: str):
    return logger.bind(job_id=job_id)
