"""Logging setup with correlation ids attached to every record."""

import logging
from contextvars import ContextVar

from appointment_service.core import config

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(service)s %(name)s [%(correlation_id)s] %(message)s"

_configured = False


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


def _install_record_factory() -> None:
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.correlation_id = correlation_id_ctx.get()
        record.service = config.SERVICE_NAME
        return record

    logging.setLogRecordFactory(record_factory)


def setup_logging() -> None:
    global _configured

    if _configured:
        return

    _install_record_factory()
    logging.basicConfig(level=config.LOG_LEVEL, format=LOG_FORMAT)
    _configured = True
