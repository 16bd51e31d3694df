"""Instruction templates for the pipeline roles and the rule generators.

Templates carry a fixed set of ``{{SLOT}}`` placeholders per role. A custom
template that drops a required slot is rejected when it is built, so a
misconfigured role never sends literal placeholder text to a model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from data_designer_prose_polisher.errors import TemplateError
from data_designer_prose_polisher.roles import Role

# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------

BLUEPRINT = "BLUEPRINT"
TWIN_DELIBERATIONS = "TWIN_DELIBERATIONS"
BLUEPRINT_SOURCE = "BLUEPRINT_SOURCE"
WRITER_PROSE = "WRITER_PROSE"
PERSONA = "PERSONA"
PREVIOUS_IDEAS = "PREVIOUS_IDEAS"
ROUND = "ROUND"
DELIVERABLE = "DELIVERABLE"
CANDIDATES = "CANDIDATES"
EXISTING_PATTERNS = "EXISTING_PATTERNS"
PREVIOUS_RULES = "PREVIOUS_RULES"
DRAFT_RULES = "DRAFT_RULES"

_SLOT_RE = re.compile(r"\{\{([A-Z_]+)\}\}")


@dataclass(frozen=True)
class InstructionTemplate:
    name: str
    text: str
    required: frozenset[str] = frozenset()
    optional: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        missing = sorted(slot for slot in self.required if "{{" + slot + "}}" not in self.text)
        if missing:
            raise TemplateError(
                f"Instruction template for {self.name!r} is missing required placeholder(s): "
                + ", ".join("{{" + slot + "}}" for slot in missing)
            )

    @property
    def slots(self) -> frozenset[str]:
        return self.required | self.optional

    def render(self, **values: str) -> str:
        """Fill the template's slots in a single pass.

        Placeholders that are not slots of this template (host macros such as
        ``{{char}}``) are left untouched, and substituted values are never
        re-scanned for placeholders.
        """
        unknown = set(values) - self.slots
        if unknown:
            raise TemplateError(f"Template {self.name!r} has no slot(s) {sorted(unknown)}")
        absent = self.required - set(values)
        if absent:
            raise TemplateError(f"Template {self.name!r} rendered without value(s) for {sorted(absent)}")

        def _fill(match: re.Match[str]) -> str:
            slot = match.group(1)
            if slot in values:
                return values[slot]
            if slot in self.optional:
                return ""
            return match.group(0)

        return _SLOT_RE.sub(_fill, self.text)


# ---------------------------------------------------------------------------
# Pipeline defaults
# ---------------------------------------------------------------------------

DEFAULT_PAPA_INSTRUCTIONS = """[OOC: You are the lead planner for the next reply in this story. Do not write the reply itself. Read the conversation so far and produce a concise blueprint for the next response:
1. Where the scene stands right now and what the character wants.
2. The single most interesting thing that should happen next.
3. Emotional beats, in order.
4. Sensory details worth using, and clichés to avoid.
5. How the reply should end (a hook, a question, a decision).
Write the blueprint as a numbered plan. Output only the plan.]"""

DEFAULT_TWINS_VEX_INSTRUCTIONS_BASE = """You are Vex. You care about character depth: motives, contradictions, body language, what is left unsaid, and how the emotional temperature of the scene should shift."""

DEFAULT_TWINS_VAX_INSTRUCTIONS_BASE = """You are Vax. You care about plot and momentum: action, consequences, the physical world, pacing, and the one complication that would make the scene more alive."""

TWINS_ROUND_TEMPLATE = """[OOC: {{PERSONA}}

# BLUEPRINT
{{BLUEPRINT}}

# IDEAS SO FAR
{{PREVIOUS_IDEAS}}

Round {{ROUND}}. Get inspired! Provide one concise note (two or three sentences) that improves the blueprint from your angle. Build on or push back against the ideas so far; do not repeat them. Output only the note.]"""

DEFAULT_MAMA_INSTRUCTIONS = """[OOC: You are the editor-in-chief of the plan for the next reply. Merge the {{BLUEPRINT_SOURCE}} and the twins' notes into one final, coherent blueprint. Keep what serves the scene, drop what contradicts the story so far, and resolve conflicts between the notes.

# {{BLUEPRINT_SOURCE}}
{{BLUEPRINT}}

# TWIN DELIBERATIONS
{{TWIN_DELIBERATIONS}}

Output only the final blueprint as a numbered plan.]"""

DEFAULT_WRITER_INSTRUCTIONS = """[OOC: You are a master writer. Follow these instructions from your project lead precisely for your next response. Do not mention the blueprint or instructions in your reply. Bring the plan to life with creative, engaging prose. Do not write from the user's perspective. Write only the character's response.

# INSTRUCTIONS
{{BLUEPRINT}}]"""

DEFAULT_AUDITOR_INSTRUCTIONS = """[OOC: You are a master line editor. Revise and polish the following text. Correct grammatical errors, awkward phrasing and typos. Eliminate repetitive words and sentence structures. Make the prose more evocative while respecting the established voice and tone. If the text fundamentally fails the narrative, rewrite it from scratch. Output ONLY the final edited text, with no commentary or preamble.

# TEXT TO EDIT
{{WRITER_PROSE}}]"""

HANDOFF_INSTRUCTIONS = """[OOC: The following response has been drafted and reviewed for your next reply. Deliver it as your reply, adjusting only what is needed for continuity with the latest user message. Do not mention drafts, plans, or reviewers.

# RESPONSE
{{DELIVERABLE}}]"""

ADHERENCE_INSTRUCTION = "[System: Adhere to the detailed blueprint provided in the following instruction.]"

DEFAULT_BLUEPRINT = "Continue the scene naturally from the latest message, staying in character and moving the story forward."
DEFAULT_BLUEPRINT_SOURCE = "Default Plan"
PAPA_BLUEPRINT_SOURCE = "Papa's Blueprint"

# ---------------------------------------------------------------------------
# Rule generation defaults
# ---------------------------------------------------------------------------

DEFAULT_REGEX_GENERATION_INSTRUCTIONS = """You are an expert in natural language processing and regular expressions. Below is a list of phrases that keep recurring in AI-written prose, each with a sentence it appeared in. For each phrase, write a regular expression that finds it and its close variants, and a replacement string that offers varied alternatives.

Rules:
1. The replacement string MUST use the {{random:option one,option two,option three}} syntax with at least 15 genuinely different, grammatical alternatives. Options are separated by commas, so options must not contain commas.
2. Use only one {{random:...}} group per rule.
3. Handle pronouns with capture groups, e.g. ([Hh]is|[Hh]er|[Tt]heir|[Mm]y|[Yy]our), and reuse them in the options as $1, $2, ...
4. If one regex cannot cover related but distinct phrasings, write separate rules.
5. Do not use lookbehind or named groups.

Output STRICTLY a JSON array of objects with the keys "scriptName", "findRegex" and "replaceString". Example:
[{"scriptName": "Slopfix - Breath Hitching", "findRegex": "\\\\b([Hh]is|[Hh]er|[Tt]heir|[Mm]y|[Yy]our)\\\\s+breath\\\\s+(?:hitched|caught)\\\\b", "replaceString": "{{random:$1 breathing stalled,a sharp inhale escaped $1 lips,air snagged in $1 chest}}"}]
Output only the JSON array."""

CANDIDATE_BLOCK_TEMPLATE = """{{EXISTING_PATTERNS}}

# PHRASES
{{CANDIDATES}}"""

TRIAGE_INSTRUCTIONS = """[OOC: You are screening phrases that were flagged as repetitive in AI-written prose. Keep only phrases that are genuine stylistic slop worth rewriting (clichés, stock body-language beats, purple filler). Drop names, plot-specific terms, ordinary function phrases, and anything already handled by the existing patterns.

# EXISTING PATTERNS
{{EXISTING_PATTERNS}}

# PHRASES
{{CANDIDATES}}

Output STRICTLY a JSON array of the phrases to keep, copied exactly as given. Output [] if none qualify.]"""

TWINS_RULE_DRAFT_INSTRUCTIONS = """{{PERSONA}}

You are drafting regex rewrite rules together with a partner over several rounds. This is round {{ROUND}}.

# RULES FROM THE PREVIOUS ROUND
{{PREVIOUS_RULES}}

{{CANDIDATES}}

Improve on the previous round: fix regexes that are too narrow or too broad, add missing variants, and widen the alternatives. Output STRICTLY the full JSON array of rules."""

TWINS_RULE_REVIEW_INSTRUCTIONS = """{{PERSONA}}

Your partner drafted the rules below in round {{ROUND}}. Audit them: every regex must compile, match the phrase and its close variants without catching unrelated text, and every replacement must use a single {{random:...}} group of grammatical, comma-free options that read naturally in place of the match.

# DRAFT
{{DRAFT_RULES}}

{{CANDIDATES}}

Output STRICTLY the corrected full JSON array of rules."""

_ROLE_SLOTS: dict[Role, tuple[frozenset[str], frozenset[str]]] = {
    Role.PAPA: (frozenset(), frozenset()),
    Role.MAMA: (frozenset({BLUEPRINT}), frozenset({TWIN_DELIBERATIONS, BLUEPRINT_SOURCE})),
    Role.WRITER: (frozenset({BLUEPRINT}), frozenset()),
    Role.AUDITOR: (frozenset({WRITER_PROSE}), frozenset()),
}

_ROLE_DEFAULTS: dict[Role, str] = {
    Role.PAPA: DEFAULT_PAPA_INSTRUCTIONS,
    Role.MAMA: DEFAULT_MAMA_INSTRUCTIONS,
    Role.WRITER: DEFAULT_WRITER_INSTRUCTIONS,
    Role.AUDITOR: DEFAULT_AUDITOR_INSTRUCTIONS,
}


def _or_default(custom: str | None, default: str) -> str:
    return custom if custom and custom.strip() else default


def role_template(role: Role, custom: str | None = None) -> InstructionTemplate:
    """Build the instruction template for a single-prompt role.

    Twins has no template of its own: each twin's persona text is dropped
    into ``TWINS_ROUND_TEMPLATE`` instead (see :func:`twins_round_template`).
    """
    if role is Role.TWINS:
        raise TemplateError("Twins use persona instructions, not a role template")
    required, optional = _ROLE_SLOTS[role]
    return InstructionTemplate(
        name=role.value,
        text=_or_default(custom, _ROLE_DEFAULTS[role]),
        required=required,
        optional=optional,
    )


def twins_round_template() -> InstructionTemplate:
    return InstructionTemplate(
        name="twins",
        text=TWINS_ROUND_TEMPLATE,
        required=frozenset({PERSONA, BLUEPRINT, PREVIOUS_IDEAS, ROUND}),
    )


def handoff_template() -> InstructionTemplate:
    return InstructionTemplate(name="handoff", text=HANDOFF_INSTRUCTIONS, required=frozenset({DELIVERABLE}))


def regex_generation_template(custom: str | None = None) -> InstructionTemplate:
    """Single-call rule generation prompt followed by the candidate block."""
    body = _or_default(custom, DEFAULT_REGEX_GENERATION_INSTRUCTIONS)
    return InstructionTemplate(
        name="regex_generation",
        text=body + "\n\n" + CANDIDATE_BLOCK_TEMPLATE,
        required=frozenset({CANDIDATES}),
        optional=frozenset({EXISTING_PATTERNS}),
    )


def triage_template() -> InstructionTemplate:
    return InstructionTemplate(
        name="triage",
        text=TRIAGE_INSTRUCTIONS,
        required=frozenset({CANDIDATES}),
        optional=frozenset({EXISTING_PATTERNS}),
    )


def twins_rule_templates() -> tuple[InstructionTemplate, InstructionTemplate]:
    draft = InstructionTemplate(
        name="twins_rule_draft",
        text=TWINS_RULE_DRAFT_INSTRUCTIONS,
        required=frozenset({PERSONA, ROUND, PREVIOUS_RULES, CANDIDATES}),
    )
    review = InstructionTemplate(
        name="twins_rule_review",
        text=TWINS_RULE_REVIEW_INSTRUCTIONS,
        required=frozenset({PERSONA, ROUND, DRAFT_RULES, CANDIDATES}),
    )
    return draft, review
