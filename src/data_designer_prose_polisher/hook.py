"""Per-turn entry point wiring analysis, rule synthesis, and the pipeline together."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from pathlib import Path

from data_designer_prose_polisher.analysis import AnalysisThresholds, FrequencyStore, summarize_leaderboard
from data_designer_prose_polisher.errors import ConfigurationError
from data_designer_prose_polisher.interfaces import (
    EnvironmentBinder,
    Generator,
    LoggingNotifier,
    Notifier,
    Persister,
    PreScreener,
)
from data_designer_prose_polisher.pipeline import Handoff, PipelineOrchestrator
from data_designer_prose_polisher.rules import RuleStore, capitalize_sentences, load_static_rules
from data_designer_prose_polisher.settings import Settings
from data_designer_prose_polisher.synthesis import RuleSynthesizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    id: str | None
    text: str
    is_user: bool = False


class ReadyBarrier:
    """Initialization gate: collaborators ``await wait()`` until the core is set up."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._event.is_set()

    def open(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class MessageHook:
    def __init__(
        self,
        settings: Settings,
        generator: Generator,
        *,
        binder: EnvironmentBinder | None = None,
        pre_screener: PreScreener | None = None,
        persister: Persister | None = None,
        notifier: Notifier | None = None,
        static_rules_path: str | Path | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.notifier = notifier or LoggingNotifier()
        self.static_rules_path = static_rules_path
        self.store = FrequencyStore(AnalysisThresholds.from_settings(settings), settings.blacklist)
        self.rules = RuleStore(settings, persister=persister)
        self.synthesizer = RuleSynthesizer(
            settings,
            self.store,
            self.rules,
            generator,
            pre_screener=pre_screener,
            binder=binder,
            notifier=self.notifier,
        )
        self.orchestrator = PipelineOrchestrator(settings, generator, binder=binder, notifier=self.notifier, rng=rng)
        self.processed_message_ids: set[str] = set()
        self.ready = ReadyBarrier()
        self.inert = False

    async def initialize(self) -> bool:
        """Load the static rules and open the ready barrier.

        A missing or malformed rule source leaves the core inert: turns are
        still accepted but do nothing.
        """
        try:
            self.rules.static_rules = load_static_rules(self.static_rules_path, self.settings.static_rule_overrides)
        except ConfigurationError as exc:
            logger.error(f"Initialization failed: {exc}")
            self.notifier.notify("error", f"Prose Polisher could not load its static rules: {exc}")
            self.inert = True
        finally:
            self.ready.open()
        return not self.inert

    def set_dynamic_enabled(self, enabled: bool) -> None:
        self.settings.is_dynamic_enabled = enabled
        if not enabled:
            self.synthesizer.reset_counter()

    def reset_chat(self) -> None:
        """Forget which message ids were analyzed; call when the host switches chats."""
        self.processed_message_ids.clear()
        logger.info("Chat changed, cleared processed message id cache")

    def analyze_latest(self, message: ChatMessage | None) -> bool:
        """Feed the last AI message into the frequency store, once per message id."""
        if message is None or message.is_user:
            return False
        if not message.id:
            logger.warning("Last AI message has no id; skipping analysis")
            return False
        if message.id in self.processed_message_ids:
            return False
        if not message.text or not message.text.strip():
            return False

        logger.info(f"Analyzing previous AI message (id {message.id})")
        self.processed_message_ids.add(message.id)
        self.store.thresholds = AnalysisThresholds.from_settings(self.settings)
        self.store.record_message(message.text)
        self.synthesizer.count_message()

        processed = self.store.processed_messages
        if processed and processed % self.settings.leaderboard_update_cycle == 0:
            self.store.prune_stale(processed)
            logger.info(f"Leaderboard after {processed} messages: {summarize_leaderboard(self.store.leaderboard())}")
        return True

    async def on_user_turn(self, last_ai_message: ChatMessage | None) -> Handoff | None:
        """Handle one user turn. Always completes; returns the pipeline handoff, if any."""
        await self.ready.wait()
        if self.inert:
            return None

        try:
            self.analyze_latest(last_ai_message)
        except Exception:
            logger.exception("Error while analyzing the latest AI message")

        await self.synthesizer.maybe_synthesize()

        if not self.settings.pipeline_enabled:
            return None
        return await self.orchestrator.run()

    def polish(self, text: str, rng: random.Random | None = None) -> str:
        return capitalize_sentences(self.rules.apply_replacements(text, rng))
