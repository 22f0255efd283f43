"""Lifecycle notifications for whatever is rendering a session's progress."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional


class StateToken(str, enum.Enum):
    PREPARING_S2C = "preparing_s2c"
    RUNNING_S2C = "running_s2c"
    FINISHED_S2C = "finished_s2c"
    PREPARING_C2S = "preparing_c2s"
    RUNNING_C2S = "running_c2s"
    FINISHED_C2S = "finished_c2s"
    PREPARING_META = "preparing_meta"
    RUNNING_META = "running_meta"
    FINISHED_META = "finished_meta"
    FINISHED_ALL = "finished_all"


@dataclass(frozen=True, slots=True)
class Callbacks:
    """Optional hooks; a missing hook is simply not called."""

    on_start: Optional[Callable[[str], None]] = None
    on_change: Optional[Callable[[str], None]] = None
    on_completion: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[str], None]] = None

    def start(self, site: str) -> None:
        if self.on_start is not None:
            self.on_start(site)

    def changed(self, token: StateToken) -> None:
        if self.on_change is not None:
            self.on_change(token.value)

    def completed(self) -> None:
        if self.on_completion is not None:
            self.on_completion()

    def errored(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)
