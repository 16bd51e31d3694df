import asyncio
import json
import random

import pytest

from data_designer_prose_polisher.hook import ChatMessage, MessageHook
from data_designer_prose_polisher.pipeline import Handoff
from data_designer_prose_polisher.settings import PipelineSettings, Settings, StageSettings, TwinsSettings

from conftest import ScriptedGenerator

RULES_JSON = json.dumps([
    {"scriptName": "Slopfix - Breath", "findRegex": r"\b(her|his) breath hitched\b", "replaceString": "$1 pulse jumped"}
])


def _writer_only() -> PipelineSettings:
    return PipelineSettings(
        papa=StageSettings(enabled=False),
        twins=TwinsSettings(enabled=False),
        mama=StageSettings(enabled=False),
    )


class TestAnalyzeLatest:
    @pytest.mark.asyncio
    async def test_each_message_id_is_analyzed_once(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        await hook.initialize()
        message = ChatMessage(id="m1", text="Her breath hitched.")

        assert hook.analyze_latest(message)
        assert not hook.analyze_latest(message)
        assert hook.store.processed_messages == 1
        assert hook.synthesizer.messages_since_trigger == 1

    @pytest.mark.parametrize(
        "message",
        [
            None,
            ChatMessage(id="u1", text="User words.", is_user=True),
            ChatMessage(id=None, text="No id."),
            ChatMessage(id="blank", text="   "),
        ],
    )
    def test_skipped_messages(self, message):
        hook = MessageHook(Settings(), ScriptedGenerator())
        assert not hook.analyze_latest(message)
        assert hook.store.processed_messages == 0

    def test_chat_switch_allows_reanalysis(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        message = ChatMessage(id="m1", text="Her breath hitched.")
        hook.analyze_latest(message)

        hook.reset_chat()

        assert hook.processed_message_ids == set()
        assert hook.analyze_latest(message)
        assert hook.store.processed_messages == 2

    def test_wordless_message_keeps_counters_aligned(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        assert hook.analyze_latest(ChatMessage(id="m1", text="..."))
        assert hook.store.processed_messages == 1
        assert hook.synthesizer.messages_since_trigger == 1

    def test_disabling_dynamic_rules_resets_counter(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        hook.analyze_latest(ChatMessage(id="m1", text="Her breath hitched."))
        hook.set_dynamic_enabled(False)
        assert hook.synthesizer.messages_since_trigger == 0
        assert not hook.settings.is_dynamic_enabled


class TestUserTurn:
    @pytest.mark.asyncio
    async def test_missing_static_rules_leave_hook_inert(self, tmp_path, notifier):
        generator = ScriptedGenerator()
        hook = MessageHook(
            Settings(pipeline_enabled=True, pipeline=_writer_only()),
            generator,
            notifier=notifier,
            static_rules_path=tmp_path / "missing.json",
        )
        assert not await hook.initialize()
        assert hook.inert
        assert hook.ready.is_open
        assert await hook.on_user_turn(ChatMessage(id="m1", text="Her breath hitched.")) is None
        assert generator.calls == []
        assert hook.store.processed_messages == 0
        assert notifier.levels() == ["error"]

    @pytest.mark.asyncio
    async def test_turn_waits_for_initialization(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        turn = asyncio.create_task(hook.on_user_turn(ChatMessage(id="m1", text="Her breath hitched.")))
        await asyncio.sleep(0)
        assert not turn.done()
        await hook.initialize()
        assert await turn is None
        assert hook.store.processed_messages == 1

    @pytest.mark.asyncio
    async def test_pipeline_handoff(self):
        hook = MessageHook(Settings(pipeline_enabled=True, pipeline=_writer_only()), ScriptedGenerator("Prose."))
        await hook.initialize()
        handoff = await hook.on_user_turn(ChatMessage(id="m1", text="Rain fell."))
        assert isinstance(handoff, Handoff)
        assert handoff.deliverable == "Prose."

    @pytest.mark.asyncio
    async def test_rules_synthesized_after_trigger(self, persister):
        settings = Settings(dynamic_trigger_count=2, slop_threshold=2, skip_triage_check=True, is_static_enabled=False)
        generator = ScriptedGenerator(RULES_JSON)
        hook = MessageHook(settings, generator, persister=persister)
        await hook.initialize()

        await hook.on_user_turn(ChatMessage(id="m1", text="Her breath hitched."))
        assert generator.calls == []
        await hook.on_user_turn(ChatMessage(id="m2", text="Her breath hitched."))

        assert len(generator.calls) == 1
        assert [r.script_name for r in hook.rules.dynamic_rules] == ["Slopfix - Breath"]
        assert hook.polish("his breath hitched. then silence.", random.Random(0)) == "His pulse jumped. Then silence."


class TestPolish:
    @pytest.mark.asyncio
    async def test_static_rules_and_capitalization(self):
        hook = MessageHook(Settings(), ScriptedGenerator())
        await hook.initialize()
        assert hook.polish("wait.... I see.") == "Wait... I see."
