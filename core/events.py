from __future__ import annotations

import json
import logging
from typing import Any, Optional

EVENT_LOGGER_NAME = 'rule_engine.events'
LOG_FORMAT = '%(asctime)s [%(levelname)s]: %(message)s'


def configure_logging(debug_logging: bool = False) -> logging.Logger:
    level = logging.DEBUG if debug_logging else logging.INFO
    logging.basicConfig(format=LOG_FORMAT, level=level, handlers=[logging.StreamHandler()], force=True)

    # Dedicated non-propagating logger for structured event lines
    event_log = logging.getLogger(EVENT_LOGGER_NAME)
    event_log.setLevel(level)
    event_log.propagate = False
    for h in list(event_log.handlers):
        event_log.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    event_log.addHandler(handler)
    return event_log


class EventBus:
    def __init__(self, *, structured_logs: bool = True, logger: Optional[Any] = None) -> None:
        self.structured_logs = structured_logs
        self.logger = logger if logger is not None else logging.getLogger(EVENT_LOGGER_NAME)

    def log(self, event: str, **fields) -> None:
        payload = {"event": event, **fields}
        try:
            if self.structured_logs:
                self.logger.info(json.dumps(payload, ensure_ascii=False, default=str))
            else:
                self.logger.info(f"{event}: {fields}")
        except (TypeError, ValueError):
            self.logger.info(str(payload))
