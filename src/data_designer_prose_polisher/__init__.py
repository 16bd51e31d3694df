# SPDX-License-Identifier: Apache-2.0
"""Prose Polisher for NeMo Data Designer.

Tracks repeated phrasing across generated messages, synthesizes regex
find/replace rules for the worst offenders with a language model, and runs
an optional multi-stage planning pipeline (Papa, Twins, Mama, Writer,
Auditor) ahead of each reply. Also adds a ``prose-polisher`` column type
that applies the rule set to a dataset column.

Usage::

    from data_designer_prose_polisher import ProsePolisherColumnConfig

    builder.add_column(ProsePolisherColumnConfig(
        name="reply_polished",
        target_column="reply",
    ))

Or, in a chat loop::

    hook = MessageHook(Settings(), ChatCompletionClient(RoleBinding(api="openai", model="gpt-4o-mini")))
    await hook.initialize()
    handoff = await hook.on_user_turn(ChatMessage(id="42", text=last_reply))
"""

from data_designer_prose_polisher.analysis import FrequencyStore, Hyperparameters
from data_designer_prose_polisher.config import ProsePolisherColumnConfig
from data_designer_prose_polisher.errors import (
    ConfigurationError,
    GenerationError,
    PipelineError,
    ProsePolisherError,
    RuleEditError,
    TemplateError,
)
from data_designer_prose_polisher.hook import ChatMessage, MessageHook
from data_designer_prose_polisher.llm import ChatCompletionClient, ChatCompletionConfig
from data_designer_prose_polisher.pipeline import Handoff, PipelineOrchestrator
from data_designer_prose_polisher.rules import Rule, RuleStore, apply_rules, load_static_rules
from data_designer_prose_polisher.settings import RoleBinding, Settings, SettingsFile
from data_designer_prose_polisher.synthesis import RuleSynthesizer

__all__ = [
    "ChatCompletionClient",
    "ChatCompletionConfig",
    "ChatMessage",
    "ConfigurationError",
    "FrequencyStore",
    "GenerationError",
    "Handoff",
    "Hyperparameters",
    "MessageHook",
    "PipelineError",
    "PipelineOrchestrator",
    "ProsePolisherColumnConfig",
    "ProsePolisherError",
    "RoleBinding",
    "Rule",
    "RuleEditError",
    "RuleStore",
    "RuleSynthesizer",
    "Settings",
    "SettingsFile",
    "TemplateError",
    "apply_rules",
    "load_static_rules",
]
