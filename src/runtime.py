from __future__ import annotations

import logging
import os


_CHATTY_LOGGERS = ("urllib3.connectionpool", "httpx", "openai._base_client")


class _BenignHttpLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith(_CHATTY_LOGGERS):
            return True
        # keep warnings and errors, drop per-request chatter
        return record.levelno >= logging.WARNING


def configure_logging(name: str, level: str | None = None) -> logging.Logger:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    if os.getenv("SUPPRESS_BENIGN_HTTP_LOGS", "1").strip().lower() not in {"0", "false", "no", "off"}:
        for handler in root_logger.handlers:
            if not any(isinstance(existing, _BenignHttpLogFilter) for existing in handler.filters):
                handler.addFilter(_BenignHttpLogFilter())
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level, logging.INFO))
    return logger
