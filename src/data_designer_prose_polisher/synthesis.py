"""AI-assisted regex rule synthesis from repetition candidates.

One synthesis attempt runs strictly in order: pick a batch of ranked
candidates, triage it (unless disabled), cap it, generate rules with the
configured strategy, then commit the rules and retire the candidates they
cover. Failures anywhere abort the attempt without partial commits.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Sequence

from pydantic import ValidationError

from data_designer_prose_polisher.analysis import FrequencyStore
from data_designer_prose_polisher.errors import GenerationError
from data_designer_prose_polisher.interfaces import (
    EnvironmentBinder,
    Generator,
    LoggingNotifier,
    Notifier,
    PreScreener,
    bound_environment,
)
from data_designer_prose_polisher.prompts import (
    CANDIDATES,
    DRAFT_RULES,
    EXISTING_PATTERNS,
    PERSONA,
    PREVIOUS_RULES,
    ROUND,
    DEFAULT_REGEX_GENERATION_INSTRUCTIONS,
    regex_generation_template,
    triage_template,
    twins_rule_templates,
)
from data_designer_prose_polisher.roles import Role
from data_designer_prose_polisher.rules import (
    Rule,
    RuleDefinition,
    RuleStore,
    compile_rule_regex,
    new_dynamic_rule_id,
)
from data_designer_prose_polisher.settings import Settings

logger = logging.getLogger(__name__)

PRESCREEN_BATCH_SIZE = 50
GENERATION_BATCH_SIZE = 15
MAX_EXISTING_PATTERNS = 100

VAX_RULE_PERSONA = (
    "You are Vax, a meticulous regular-expression auditor. You keep patterns precise, "
    "make sure capture groups line up with the $N references in the replacements, and "
    "reject alternatives that are ungrammatical in place of the match."
)
VEX_RULE_PERSONA_SUFFIX = (
    "You are Vex. You push for bold, genuinely different alternatives and for patterns "
    "that catch every close variant of a phrase."
)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_SPACED_TEMPLATE_OPEN_RE = re.compile(r"\{\s+\{random:")
_SPACED_TEMPLATE_CLOSE_RE = re.compile(r"\}\s+\}")


def parse_json_array(text: str) -> list:
    """Pull the first JSON array out of a model response (fences and chatter tolerated)."""
    if not text or not text.strip():
        raise GenerationError("Model returned an empty response")
    fenced = _FENCE_RE.search(text)
    body = fenced.group(1) if fenced else text
    start, end = body.find("["), body.rfind("]")
    if start == -1 or end < start:
        raise GenerationError("Model response contains no JSON array")
    try:
        data = json.loads(body[start : end + 1])
    except json.JSONDecodeError as exc:
        raise GenerationError(f"Model response is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise GenerationError("Model response JSON is not an array")
    return data


def _compact_random_template(replace_string: str) -> str:
    text = _SPACED_TEMPLATE_OPEN_RE.sub("{{random:", replace_string)
    if "{{random:" in text:
        text = _SPACED_TEMPLATE_CLOSE_RE.sub("}}", text)
    return text


def parse_generated_rules(text: str, existing_find_regexes: Sequence[str] = ()) -> list[Rule]:
    """Validate model-written rules; invalid or duplicate entries are dropped with a warning."""
    seen = set(existing_find_regexes)
    rules: list[Rule] = []
    for item in parse_json_array(text):
        try:
            definition = RuleDefinition.model_validate(item)
        except ValidationError as exc:
            logger.warning(f"Skipping malformed generated rule {item!r}: {exc.errors()[0]['msg']}")
            continue
        rule = Rule(
            id=new_dynamic_rule_id(),
            script_name=definition.script_name,
            find_regex=definition.find_regex,
            replace_string=_compact_random_template(definition.replace_string),
        )
        if compile_rule_regex(rule.find_regex) is None:
            logger.warning(f"Skipping generated rule {rule.script_name!r}: regex does not compile")
            continue
        if rule.random_group_count > 1:
            logger.warning(f"Skipping generated rule {rule.script_name!r}: more than one random group")
            continue
        if rule.find_regex in seen:
            logger.debug(f"Skipping generated rule {rule.script_name!r}: duplicate pattern")
            continue
        seen.add(rule.find_regex)
        rules.append(rule)
    return rules


def format_candidates(batch: Sequence[dict[str, str]]) -> str:
    lines = []
    for item in batch:
        context = item.get("enhanced_context") or ""
        line = f"- {json.dumps(item['candidate'], ensure_ascii=False)}"
        if context:
            line += f" (context: {json.dumps(context, ensure_ascii=False)})"
        lines.append(line)
    return "\n".join(lines)


def format_patterns(matchers: Sequence[re.Pattern[str]]) -> str:
    if not matchers:
        return "(none)"
    return "\n".join(f"- {m.pattern}" for m in matchers[:MAX_EXISTING_PATTERNS])


# ---------------------------------------------------------------------------
# Triage
# ---------------------------------------------------------------------------


class GenerativePreScreener:
    """Triage: drop candidates existing rules already match, then let the Twins binding judge the rest."""

    def __init__(self, generator: Generator, settings: Settings, binder: EnvironmentBinder | None = None):
        self.generator = generator
        self.settings = settings
        self.binder = binder

    async def pre_screen(self, candidates: list[str], matchers: Sequence[re.Pattern[str]]) -> list[str]:
        uncovered = [c for c in candidates if not any(m.search(c) for m in matchers)]
        if len(uncovered) < len(candidates):
            logger.info(f"Triage: {len(candidates) - len(uncovered)} candidates already covered by existing rules")
        if not uncovered:
            return []

        instruction = triage_template().render(
            **{
                CANDIDATES: "\n".join(f"- {json.dumps(c, ensure_ascii=False)}" for c in uncovered),
                EXISTING_PATTERNS: format_patterns(matchers),
            }
        )
        async with bound_environment(self.binder, self.settings.pipeline.twins.binding, "Twins"):
            response = await self.generator.generate(instruction)

        wanted = {str(k).strip().lower() for k in parse_json_array(response) if isinstance(k, str)}
        kept = [c for c in uncovered if c.strip().lower() in wanted]
        logger.info(f"Triage kept {len(kept)} of {len(uncovered)} candidates")
        return kept


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class RuleSynthesizer:
    def __init__(
        self,
        settings: Settings,
        store: FrequencyStore,
        rules: RuleStore,
        generator: Generator,
        pre_screener: PreScreener | None = None,
        binder: EnvironmentBinder | None = None,
        notifier: Notifier | None = None,
    ):
        self.settings = settings
        self.store = store
        self.rules = rules
        self.generator = generator
        self.binder = binder
        self.pre_screener = pre_screener or GenerativePreScreener(generator, settings, binder)
        self.notifier = notifier or LoggingNotifier()
        self.in_flight = False
        self.messages_since_trigger = 0

    def count_message(self) -> None:
        if self.settings.is_dynamic_enabled:
            self.messages_since_trigger += 1
            logger.debug(f"Dynamic trigger counter incremented to {self.messages_since_trigger}")

    def reset_counter(self) -> None:
        self.messages_since_trigger = 0

    async def maybe_synthesize(self) -> int:
        """Run one synthesis attempt if the trigger conditions hold. Returns the number of rules added.

        Never raises: every failure is logged and surfaced through the notifier.
        """
        if self.in_flight:
            logger.debug("Rule synthesis already in flight; ignoring trigger")
            return 0
        if not self.settings.is_dynamic_enabled:
            return 0
        if self.messages_since_trigger < self.settings.dynamic_trigger_count:
            return 0
        keys = self.store.rank_candidates()
        if not keys:
            return 0

        logger.info(f"Dynamic rule generation triggered with {len(keys)} candidates")
        self.messages_since_trigger = 0
        self.in_flight = True
        try:
            return await self._synthesize(keys)
        except Exception as exc:
            logger.exception("Error during automatic rule generation")
            self.notifier.notify("error", f"An error occurred during auto rule generation: {exc}")
            return 0
        finally:
            self.in_flight = False

    async def _synthesize(self, keys: list[str]) -> int:
        batch = self.store.candidate_payloads(keys[:PRESCREEN_BATCH_SIZE])
        if not batch:
            return 0

        if self.settings.skip_triage_check:
            logger.info("Skip triage is enabled; using raw candidates")
            survivors = batch
        else:
            self.notifier.notify("info", f"Pre-screening {len(batch)} repetition candidates...")
            try:
                kept = await self.pre_screener.pre_screen(
                    [c["candidate"] for c in batch], self.rules.compiled_matchers()
                )
            except Exception as exc:
                logger.exception("Error in candidate pre-screening")
                self.notifier.notify("error", f"Error during candidate pre-screening: {exc}")
                return 0
            kept_set = set(kept)
            survivors = [c for c in batch if c["candidate"] in kept_set]

        if not survivors:
            self.notifier.notify("info", "Pre-screening found no candidates worth a new rule.")
            return 0

        to_process = survivors[:GENERATION_BATCH_SIZE]
        method = self.settings.regex_generation_method
        self.notifier.notify("info", f"Generating rules ({method}) for {len(to_process)} candidates...")
        generated = await self._generate(to_process)

        added = self.rules.add_dynamic_rules(generated)
        if added:
            for candidate in to_process:
                self.store.consume(candidate["candidate"])
            self.notifier.notify("success", f"Added {len(added)} new dynamic rule(s).")
        else:
            self.notifier.notify("info", "Rule generation produced no new rules.")
        logger.info(f"Rule synthesis committed {len(added)} rules from {len(to_process)} candidates")
        return len(added)

    # -- strategies ---------------------------------------------------------

    def _existing_find_regexes(self) -> list[str]:
        return [r.find_regex for r in self.rules.all_rules()]

    async def _generate(self, batch: list[dict[str, str]]) -> list[Rule]:
        method = self.settings.regex_generation_method
        if method == "twins":
            return await self._generate_iteratively(batch, self.settings.regex_twins_cycles)
        if method == "single":
            return await self._generate_single(batch, self.settings.regex_generator_role)
        return await self._generate_single(batch, None)

    async def _generate_single(self, batch: list[dict[str, str]], role: Role | None) -> list[Rule]:
        instruction = regex_generation_template(self.settings.regex_generation_instructions).render(
            **{
                CANDIDATES: format_candidates(batch),
                EXISTING_PATTERNS: "",
            }
        )
        binding = self.settings.pipeline.binding_for(role) if role is not None else None
        label = role.label if role is not None else "current"
        async with bound_environment(self.binder, binding, label):
            response = await self.generator.generate(instruction)
        return parse_generated_rules(response, self._existing_find_regexes())

    async def _generate_iteratively(self, batch: list[dict[str, str]], cycles: int) -> list[Rule]:
        draft_template, review_template = twins_rule_templates()
        instructions = self.settings.regex_generation_instructions.strip() or DEFAULT_REGEX_GENERATION_INSTRUCTIONS
        vex_persona = f"{instructions}\n\n{VEX_RULE_PERSONA_SUFFIX}"
        candidates = "# PHRASES\n" + format_candidates(batch)
        existing = self._existing_find_regexes()

        previous = "[]"
        converged: list[Rule] = []
        async with bound_environment(self.binder, self.settings.pipeline.twins.binding, "Twins"):
            for cycle in range(1, cycles + 1):
                draft = await self.generator.generate(
                    draft_template.render(
                        **{PERSONA: vex_persona, ROUND: str(cycle), PREVIOUS_RULES: previous, CANDIDATES: candidates}
                    )
                )
                reviewed = await self.generator.generate(
                    review_template.render(
                        **{PERSONA: VAX_RULE_PERSONA, ROUND: str(cycle), DRAFT_RULES: draft, CANDIDATES: candidates}
                    )
                )
                try:
                    rules = parse_generated_rules(reviewed, existing)
                except GenerationError as exc:
                    logger.warning(f"Twins cycle {cycle}/{cycles} produced no usable rules: {exc}")
                    continue
                if rules:
                    converged = rules
                    previous = json.dumps(
                        [
                            {"scriptName": r.script_name, "findRegex": r.find_regex, "replaceString": r.replace_string}
                            for r in rules
                        ],
                        ensure_ascii=False,
                    )
                logger.info(f"Twins cycle {cycle}/{cycles} converged on {len(rules)} rules")
        return converged
