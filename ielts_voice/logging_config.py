import sys
import logging
import os
import uuid
from loguru import logger
from fastapi import Request

# <level> and </level> are loguru tags for coloring
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> {extra}"
)

class InterceptHandler(logging.Handler):
    """
    Default handler from python logging to loguru.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

def setup_logging(level: str = "INFO", log_dir: str | None = "logs"):
    """
    Configures loguru to handle all logs (including standard logging).
    Pass log_dir=None to keep output on stderr only.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, "ielts_voice_{time:YYYY-MM-DD}.log")
        logger.add(
            log_file,
            format=LOG_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="10 days",
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    # Intercept standard logging (FastAPI, Uvicorn, etc.)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi"):
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = [InterceptHandler()]
        logging_logger.propagate = False

    logger.info(f"Logging initialized at level {level}.")

async def logging_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())
    # Bind request_id to all logs in this request context
    with logger.contextualize(request_id=request_id):
        logger.info(f"Incoming request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Completed request: {request.method} {request.url.path} - Status: {response.status_code}")
        return response
