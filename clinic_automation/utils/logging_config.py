"""
Logging setup for the scheduler process and one-off CLI runs.

Inside a container (Fly.io, Kubernetes, Docker) the runtime stamps every line
itself, so the formatter drops the timestamp there.

Usage:
    from clinic_automation.utils.logging_config import configure_logging
    configure_logging(logging.DEBUG)
"""
import logging
import os
import sys
from typing import Optional, TextIO

CONTAINER_FORMAT = "[%(name)s] %(levelname)s: %(message)s"
LOCAL_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-request chatter from the HTTP stack and APScheduler's executor
NOISY_LOGGERS = (
    'httpx',
    'httpcore',
    'hpack',
    'apscheduler.executors.default',
    'twilio.http_client',
)


def is_containerized() -> bool:
    return bool(
        os.environ.get('FLY_APP_NAME')
        or os.environ.get('KUBERNETES_SERVICE_HOST')
        or os.path.exists('/.dockerenv')
    )


def build_formatter(containerized: Optional[bool] = None) -> logging.Formatter:
    if containerized is None:
        containerized = is_containerized()
    if containerized:
        return logging.Formatter(CONTAINER_FORMAT)
    return logging.Formatter(LOCAL_FORMAT, datefmt=DATE_FORMAT)


def configure_logging(level: int = logging.INFO, force: bool = False, stream: Optional[TextIO] = None) -> None:
    """
    Install a single stream handler on the root logger.

    Args:
        level: Root log level
        force: Replace handlers that are already installed
        stream: Where log lines go (default: stdout)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        return

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(build_formatter())
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
