"""Permission statuses and the config-backed permission provider.

Callers only branch on the returned status; a denial is never raised as an
error.
"""

from __future__ import annotations

import enum
import logging
from typing import Protocol

from fieldsales_tracker.config import PermissionsConfig

logger = logging.getLogger(__name__)


class PermissionStatus(enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"

    @property
    def granted(self) -> bool:
        return self is PermissionStatus.GRANTED


class PermissionProvider(Protocol):
    async def request_foreground_location(self) -> PermissionStatus: ...

    async def request_background_location(self) -> PermissionStatus: ...

    async def request_notifications(self) -> PermissionStatus: ...


class StaticPermissions:
    """Answer permission prompts from the ``permissions`` config section.

    Headless hosts have no user to prompt, so the operator grants or denies
    each capability up front.  Every prompt is counted so callers can
    verify that a denial is not re-prompted.
    """

    def __init__(self, config: PermissionsConfig) -> None:
        self._config = config
        self.prompts: dict[str, int] = {}

    async def request_foreground_location(self) -> PermissionStatus:
        return self._answer("foreground_location")

    async def request_background_location(self) -> PermissionStatus:
        return self._answer("background_location")

    async def request_notifications(self) -> PermissionStatus:
        return self._answer("notifications")

    def _answer(self, name: str) -> PermissionStatus:
        self.prompts[name] = self.prompts.get(name, 0) + 1
        status = PermissionStatus(getattr(self._config, name))
        logger.info("Permission %s: %s", name, status.value)
        return status
