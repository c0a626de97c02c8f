from __future__ import annotations

import logging
import sys

# Loggers that already emit one JSON object per line.
_JSON_LOGGERS = ("app.request",)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root.handlers.clear()
    root.addHandler(handler)

    raw = logging.StreamHandler(sys.stdout)
    raw.setLevel(level)
    raw.setFormatter(logging.Formatter("%(message)s"))
    for name in _JSON_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.addHandler(raw)
        lg.propagate = False

    # SQL echo is controlled by SQLAlchemy's own flags, not LOG_LEVEL=DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(max(logging.WARNING, root.level))
