# Copyright 2022 Chorus One

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# A copy of the License has been included in the root of the repository.

"""
Decisions and actions taken by the reconciler are recorded as events rather
than logged directly. The event log forwards every event to the standard
library logger, and tests can inspect what was decided.
"""

from __future__ import annotations

import logging

from typing import Any, Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class Event(NamedTuple):
    level: int
    action: str
    message: str
    fields: Dict[str, Any]

    def format(self) -> str:
        if len(self.fields) == 0:
            return self.message
        details = " ".join(f"{k}={v}" for k, v in sorted(self.fields.items()))
        return f"{self.message} ({details})"


class EventLog:
    def __init__(self, forward_to: Optional[logging.Logger] = logger) -> None:
        self.events: List[Event] = []
        self.forward_to = forward_to

    def record(self, level: int, action: str, message: str, **fields: Any) -> Event:
        event = Event(level=level, action=action, message=message, fields=fields)
        self.events.append(event)
        if self.forward_to is not None:
            self.forward_to.log(level, "%s", event.format())
        return event

    def debug(self, action: str, message: str, **fields: Any) -> Event:
        return self.record(logging.DEBUG, action, message, **fields)

    def info(self, action: str, message: str, **fields: Any) -> Event:
        return self.record(logging.INFO, action, message, **fields)

    def warning(self, action: str, message: str, **fields: Any) -> Event:
        return self.record(logging.WARNING, action, message, **fields)

    def error(self, action: str, message: str, **fields: Any) -> Event:
        return self.record(logging.ERROR, action, message, **fields)

    def with_action(self, action: str) -> List[Event]:
        return [e for e in self.events if e.action == action]

    def actions(self) -> List[str]:
        return [e.action for e in self.events]
