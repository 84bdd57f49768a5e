import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Issuance workers log one JSON object per line on stdout; the CloudWatch agent
# ships them to /bulkcerts/workers. Every line carries task_id and chunk_id
# (null outside a chunk) so a single chunk can be followed with a metric filter
# such as { $.task_id = "..." && $.chunk_id = 3 }.

CHUNK_FIELDS = ("task_id", "chunk_id", "ca_alias")

# botocore logs request signing at DEBUG; keep it out of verbose worker output
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")

_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for field in CHUNK_FIELDS:
            payload[field] = getattr(record, field, None)

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k.startswith("_"):
                continue
            payload.setdefault(k, v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(verbose: bool = False) -> None:
    """
    Route all logging to stdout as JSON lines for the issuance workers.

    Args:
        verbose: If True, bulkcerts loggers go to DEBUG and the root logger to INFO.
                 Otherwise BULKCERTS_ROOT_LOG_LEVEL / BULKCERTS_APP_LOG_LEVEL apply
                 (WARNING and INFO by default).
    """
    if verbose:
        root_level = "INFO"
        app_level = "DEBUG"
    else:
        root_level = os.environ.get("BULKCERTS_ROOT_LOG_LEVEL", "WARNING").upper()
        app_level = os.environ.get("BULKCERTS_APP_LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))

    app_logger = logging.getLogger("bulkcerts")
    app_logger.setLevel(app_level)
    app_logger.propagate = True
