"""Static and dynamic find/replace rules and the substitution pass that applies them."""

from __future__ import annotations

import json
import logging
import random
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from data_designer_prose_polisher.errors import ConfigurationError, RuleEditError
from data_designer_prose_polisher.interfaces import NullPersister, Persister
from data_designer_prose_polisher.sampling import uniform_choice
from data_designer_prose_polisher.settings import Settings

logger = logging.getLogger(__name__)

RULE_ID_PREFIX = "_prose_polisher_rule_"
DISPLAY_PREFIX = "(PP) "
STATIC_SUFFIX = "_static"

_RANDOM_TEMPLATE_RE = re.compile(r"\{\{random:([\s\S]+?)\}\}")
_BACKREF_RE = re.compile(r"\$(\d)")
_SPACES_RE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Rule model
# ---------------------------------------------------------------------------


class RuleDefinition(BaseModel):
    """Wire shape of a rule, as found in the static file and in model output."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    script_name: str = Field(alias="scriptName", min_length=1)
    find_regex: str = Field(alias="findRegex", min_length=1)
    replace_string: str = Field(default="", alias="replaceString")
    disabled: bool = False


@dataclass
class Rule:
    id: str
    script_name: str
    find_regex: str
    replace_string: str
    disabled: bool = False
    is_static: bool = False
    is_new: bool = field(default=False, compare=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scriptName": self.script_name,
            "findRegex": self.find_regex,
            "replaceString": self.replace_string,
            "disabled": self.disabled,
            "isStatic": self.is_static,
        }

    @property
    def random_group_count(self) -> int:
        return len(_RANDOM_TEMPLATE_RE.findall(self.replace_string))


def new_dynamic_rule_id() -> str:
    return f"DYN_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5]}"


def static_rule_id(script_name: str) -> str:
    return f"{RULE_ID_PREFIX}{_SPACES_RE.sub('_', script_name.strip())}{STATIC_SUFFIX}"


def dynamic_rule_from_payload(payload: Mapping[str, Any]) -> Rule:
    definition = RuleDefinition.model_validate(payload)
    return Rule(
        id=definition.id or new_dynamic_rule_id(),
        script_name=definition.script_name,
        find_regex=definition.find_regex,
        replace_string=definition.replace_string,
        disabled=definition.disabled,
        is_static=False,
    )


# ---------------------------------------------------------------------------
# Static rule source
# ---------------------------------------------------------------------------


def _default_rules_text() -> str:
    return resources.files("data_designer_prose_polisher").joinpath("data", "regex_rules.json").read_text(
        encoding="utf-8"
    )


def load_static_rules(
    path: str | Path | None = None,
    overrides: Mapping[str, Mapping[str, bool]] | None = None,
) -> list[Rule]:
    """Load the ordered static rule list and apply saved ``disabled`` overrides.

    A missing, unreadable, or malformed source is fatal: raises ``ConfigurationError``.
    """
    source = str(path) if path is not None else "bundled regex_rules.json"
    try:
        text = Path(path).read_text(encoding="utf-8") if path is not None else _default_rules_text()
        payload = json.loads(text)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not load static rules from {source}: {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError(f"Static rules in {source} must be a JSON array")

    overrides = overrides or {}
    rules: list[Rule] = []
    seen: set[str] = set()
    for index, entry in enumerate(payload):
        try:
            definition = RuleDefinition.model_validate(entry)
        except ValidationError as exc:
            raise ConfigurationError(f"Static rule #{index} in {source} is malformed: {exc}") from exc
        rule_id = definition.id or static_rule_id(definition.script_name)
        if rule_id in seen:
            rule_id = f"{rule_id}_{index}"
        seen.add(rule_id)
        disabled = definition.disabled
        if "disabled" in overrides.get(rule_id, {}):
            disabled = bool(overrides[rule_id]["disabled"])
        rules.append(
            Rule(
                id=rule_id,
                script_name=definition.script_name,
                find_regex=definition.find_regex,
                replace_string=definition.replace_string,
                disabled=disabled,
                is_static=True,
            )
        )
    logger.info(f"Loaded {len(rules)} static rules from {source}")
    return rules


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1024)
def compile_rule_regex(find_regex: str) -> re.Pattern[str] | None:
    try:
        return re.compile(find_regex, re.IGNORECASE)
    except re.error:
        return None


def _expand_backrefs(template: str, match: re.Match[str]) -> str:
    def _group(ref: re.Match[str]) -> str:
        index = int(ref.group(1))
        if index == 0 or index > match.re.groups:
            return ""
        return match.group(index) or ""

    return _BACKREF_RE.sub(_group, template)


def _replacer(rule: Rule, rng: random.Random) -> Callable[[re.Match[str]], str]:
    template = _RANDOM_TEMPLATE_RE.search(rule.replace_string)
    if template is None:
        return lambda m: _expand_backrefs(rule.replace_string, m)

    options = [option.strip() for option in template.group(1).split(",")]
    prefix = rule.replace_string[: template.start()]
    suffix = rule.replace_string[template.end() :]
    return lambda m: _expand_backrefs(prefix + uniform_choice(options, rng) + suffix, m)


def apply_rules(text: str, rules: Iterable[Rule], rng: random.Random | None = None) -> str:
    """Apply ``rules`` one after another; each rule sees the previous rule's output."""
    if not text:
        return text
    rng = rng or random.Random()
    for rule in rules:
        pattern = compile_rule_regex(rule.find_regex)
        if pattern is None:
            logger.warning(f"Invalid regex in rule {rule.script_name!r}, skipping: {rule.find_regex!r}")
            continue
        text = pattern.sub(_replacer(rule, rng), text)
    return text


_LEADING_LOWER_RE = re.compile(r"^((?:\s*<[^>]*>)*\s*)([a-z])")
_SENTENCE_LOWER_RE = re.compile(r"([.!?])(\s+(?:<[^>]*>\s*)*)([a-z])")


def capitalize_sentences(text: str) -> str:
    """Uppercase the first letter of the text and of every sentence, looking past inline tags."""
    if not text:
        return text
    text = _LEADING_LOWER_RE.sub(lambda m: m.group(1) + m.group(2).upper(), text, count=1)
    return _SENTENCE_LOWER_RE.sub(lambda m: m.group(1) + m.group(2) + m.group(3).upper(), text)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class RuleStore:
    """Static (file-sourced) and dynamic (synthesized) rules.

    Enable flags are read from ``settings`` on every call, so toggling a flag
    takes effect on the next substitution pass without rebuilding the store.
    """

    def __init__(
        self,
        settings: Settings,
        static_rules: list[Rule] | None = None,
        persister: Persister | None = None,
    ):
        self.settings = settings
        self.static_rules: list[Rule] = list(static_rules or [])
        self.persister = persister or NullPersister()
        self.dynamic_rules: list[Rule] = []
        for payload in settings.dynamic_rules:
            try:
                self.dynamic_rules.append(dynamic_rule_from_payload(payload))
            except ValidationError as exc:
                logger.warning(f"Dropping malformed saved dynamic rule {payload!r}: {exc}")

    # -- views --------------------------------------------------------------

    def all_rules(self) -> list[Rule]:
        return self.static_rules + self.dynamic_rules

    def active_rules(self) -> list[Rule]:
        rules: list[Rule] = []
        if self.settings.is_static_enabled:
            rules.extend(r for r in self.static_rules if not r.disabled)
        if self.settings.is_dynamic_enabled:
            rules.extend(r for r in self.dynamic_rules if not r.disabled)
        return rules

    def compiled_matchers(self) -> list[re.Pattern[str]]:
        return [p for p in (compile_rule_regex(r.find_regex) for r in self.active_rules()) if p is not None]

    def get(self, rule_id: str) -> Rule | None:
        for rule in self.all_rules():
            if rule.id == rule_id:
                return rule
        return None

    def apply_replacements(self, text: str, rng: random.Random | None = None) -> str:
        return apply_rules(text, self.active_rules(), rng)

    def export_for_global_integration(self, global_rules: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Return ``global_rules`` with this engine's entries regenerated.

        Every entry carrying the engine id prefix is dropped first, so calling
        this repeatedly never duplicates rules.
        """
        exported = [dict(r) for r in global_rules if not str(r.get("id") or "").startswith(RULE_ID_PREFIX)]
        if not self.settings.integrate_with_global_regex:
            logger.info("Global regex integration is off; engine rules removed from the global list")
            return exported
        active = self.active_rules()
        for rule in active:
            exported.append(
                {
                    "id": rule.id if rule.id.startswith(RULE_ID_PREFIX) else f"{RULE_ID_PREFIX}{rule.id}",
                    "scriptName": f"{DISPLAY_PREFIX}{rule.script_name}",
                    "findRegex": rule.find_regex,
                    "replaceString": rule.replace_string,
                    "disabled": rule.disabled,
                    "substituteRegex": 0,
                    "minDepth": None,
                    "maxDepth": None,
                    "trimStrings": [],
                    "placement": [0, 2, 3, 5, 6],
                    "runOnEdit": False,
                    "markdownOnly": True,
                    "promptOnly": True,
                }
            )
        logger.info(f"Exported {len(active)} engine rules to the global regex list")
        return exported

    # -- mutation -----------------------------------------------------------

    def _persist_dynamic(self) -> None:
        payload = [r.to_payload() for r in self.dynamic_rules]
        self.settings.dynamic_rules = payload
        self.persister.persist({"dynamicRules": payload})

    def _persist_override(self, rule: Rule) -> None:
        overrides = dict(self.settings.static_rule_overrides)
        overrides[rule.id] = {"disabled": rule.disabled}
        self.settings.static_rule_overrides = overrides
        self.persister.persist({"staticRuleOverrides": overrides})

    def add_dynamic_rules(self, rules: Iterable[Rule]) -> list[Rule]:
        added = [replace(r, is_static=False, is_new=True) for r in rules]
        if added:
            self.dynamic_rules.extend(added)
            self._persist_dynamic()
        return added

    def create_rule(self, script_name: str, find_regex: str, replace_string: str, disabled: bool = False) -> Rule:
        _validate_edit(script_name, find_regex)
        rule = Rule(
            id=new_dynamic_rule_id(),
            script_name=script_name,
            find_regex=find_regex,
            replace_string=replace_string,
            disabled=disabled,
        )
        return self.add_dynamic_rules([rule])[0]

    def update_rule(
        self,
        rule_id: str,
        *,
        script_name: str | None = None,
        find_regex: str | None = None,
        replace_string: str | None = None,
        disabled: bool | None = None,
    ) -> Rule:
        rule = self.get(rule_id)
        if rule is None:
            raise RuleEditError(f"Rule {rule_id!r} not found")
        content_changed = any(v is not None for v in (script_name, find_regex, replace_string))
        if rule.is_static:
            if content_changed:
                raise RuleEditError(f"Static rule {rule.script_name!r} can only be enabled or disabled")
            if disabled is not None:
                rule.disabled = disabled
                self._persist_override(rule)
            return rule

        new_name = rule.script_name if script_name is None else script_name
        new_find = rule.find_regex if find_regex is None else find_regex
        _validate_edit(new_name, new_find)
        rule.script_name = new_name
        rule.find_regex = new_find
        if replace_string is not None:
            rule.replace_string = replace_string
        if disabled is not None:
            rule.disabled = disabled
        self._persist_dynamic()
        return rule

    def toggle_rule(self, rule_id: str) -> Rule | None:
        rule = self.get(rule_id)
        if rule is None:
            logger.warning(f"Rule with id {rule_id!r} not found for toggling")
            return None
        return self.update_rule(rule_id, disabled=not rule.disabled)

    def delete_rule(self, rule_id: str) -> bool:
        for index, rule in enumerate(self.dynamic_rules):
            if rule.id == rule_id:
                del self.dynamic_rules[index]
                self._persist_dynamic()
                return True
        if any(r.id == rule_id for r in self.static_rules):
            raise RuleEditError("Static rules cannot be deleted, only disabled")
        logger.warning(f"Dynamic rule with id {rule_id!r} not found for deletion")
        return False

    def clear_new_flags(self) -> None:
        for rule in self.dynamic_rules:
            rule.is_new = False


def _validate_edit(script_name: str, find_regex: str) -> None:
    if not script_name.strip() or not find_regex.strip():
        raise RuleEditError("Rule name and find regex cannot be empty")
    try:
        re.compile(find_regex)
    except re.error as exc:
        raise RuleEditError(f"Invalid regex: {exc}") from exc
