"""Contracts for the host-provided capabilities the engine consumes.

The engine never talks to a model provider, a settings store, or a UI
directly; it is handed objects that satisfy these protocols.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Literal, Protocol, Sequence, runtime_checkable

from data_designer_prose_polisher.errors import GenerationError

if TYPE_CHECKING:
    from data_designer_prose_polisher.settings import RoleBinding

logger = logging.getLogger(__name__)

NotifyLevel = Literal["info", "success", "warning", "error"]


@runtime_checkable
class Generator(Protocol):
    async def generate(self, instruction: str) -> str:
        """Run one generation round-trip against the active environment."""
        ...


@runtime_checkable
class PreScreener(Protocol):
    async def pre_screen(self, candidates: list[str], matchers: Sequence[re.Pattern[str]]) -> list[str]:
        """Return the subset of ``candidates`` that still deserve a new rule."""
        ...


@runtime_checkable
class EnvironmentBinder(Protocol):
    async def bind(self, binding: RoleBinding) -> bool:
        """Make ``binding`` the active provider/model/preset. Returns success."""
        ...

    async def release(self) -> None:
        """Restore whatever environment was active before the first ``bind``."""
        ...


@runtime_checkable
class Persister(Protocol):
    def persist(self, patch: dict[str, Any]) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    def notify(self, level: NotifyLevel, message: str) -> None: ...


_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingNotifier:
    """Notifier that surfaces user-facing messages through the logger."""

    def notify(self, level: NotifyLevel, message: str) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), message)


class NullPersister:
    """Persister that drops every patch."""

    def persist(self, patch: dict[str, Any]) -> None:
        return None


@asynccontextmanager
async def bound_environment(
    binder: EnvironmentBinder | None,
    binding: RoleBinding | None,
    label: str,
) -> AsyncIterator[bool]:
    """Bind ``binding`` for the duration of the block, then release it.

    An unset binding (or no binder at all) means "stay on the current
    connection" and yields ``False`` without touching the environment.
    """
    if binder is None or binding is None or not binding.is_set:
        yield False
        return
    try:
        if not await binder.bind(binding):
            raise GenerationError(f"Failed to configure {label} environment ({binding.describe()})")
        yield True
    finally:
        await binder.release()
