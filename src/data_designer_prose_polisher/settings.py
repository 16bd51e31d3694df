from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from data_designer_prose_polisher.errors import ConfigurationError
from data_designer_prose_polisher.prompts import role_template
from data_designer_prose_polisher.roles import Role

logger = logging.getLogger(__name__)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# ---------------------------------------------------------------------------
# Pipeline bindings
# ---------------------------------------------------------------------------


class RoleBinding(_Model):
    """Provider/model/preset a role runs on. An empty ``api`` means "leave the current connection"."""

    api: str = ""
    model: str = ""
    source: str = ""
    custom_url: str = ""
    preset: str = "Default"

    @property
    def is_set(self) -> bool:
        return bool(self.api or self.model or self.custom_url)

    def describe(self) -> str:
        return f"{self.api or 'None'} / {self.model or 'Not Set'} / {self.preset or 'Default'}"


class ChaosOption(RoleBinding):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    weight: int = Field(default=1, ge=1, le=100)


class StageSettings(_Model):
    enabled: bool = True
    binding: RoleBinding = Field(default_factory=RoleBinding)
    instructions: str = ""


class TwinsSettings(_Model):
    enabled: bool = True
    binding: RoleBinding = Field(default_factory=RoleBinding)
    vex_instructions: str = ""
    vax_instructions: str = ""
    iterations: int = Field(default=3, ge=1, le=10)


class WriterSettings(_Model):
    binding: RoleBinding = Field(default_factory=RoleBinding)
    instructions: str = ""
    chaos_mode_enabled: bool = False
    chaos_options: list[ChaosOption] = Field(default_factory=list)


def _google(model: str) -> RoleBinding:
    return RoleBinding(api="google", model=model)


class PipelineSettings(_Model):
    papa: StageSettings = Field(default_factory=lambda: StageSettings(binding=_google("gemini-2.5-flash")))
    twins: TwinsSettings = Field(
        default_factory=lambda: TwinsSettings(binding=_google("gemini-2.5-flash-lite-preview-06-17"))
    )
    mama: StageSettings = Field(default_factory=lambda: StageSettings(binding=_google("gemini-2.5-flash")))
    writer: WriterSettings = Field(default_factory=WriterSettings)
    auditor: StageSettings = Field(default_factory=lambda: StageSettings(enabled=False))

    @model_validator(mode="after")
    def _validate_templates(self) -> PipelineSettings:
        # TemplateError is not a ValueError, so pydantic lets it through unwrapped.
        for role in (Role.PAPA, Role.MAMA, Role.WRITER, Role.AUDITOR):
            role_template(role, self.instructions_for(role))
        return self

    def binding_for(self, role: Role) -> RoleBinding:
        return getattr(self, role.value).binding

    def instructions_for(self, role: Role) -> str:
        return getattr(self, role.value).instructions

    def is_enabled(self, role: Role) -> bool:
        if role is Role.WRITER:
            return True
        return getattr(self, role.value).enabled


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------


class Settings(_Model):
    """Every option the host persists for the engine.

    Field names are snake_case; the persisted keys are their camelCase
    aliases (``slopThreshold``, ``dynamicTriggerCount``, ...).
    """

    # Rules
    is_static_enabled: bool = True
    is_dynamic_enabled: bool = True
    integrate_with_global_regex: bool = True
    dynamic_trigger_count: int = Field(default=30, ge=1)
    regex_generation_instructions: str = ""
    regex_generation_method: Literal["current", "single", "twins"] = "current"
    regex_generator_role: Role = Role.WRITER
    regex_twins_cycles: int = Field(default=2, ge=1, le=10)
    skip_triage_check: bool = False

    # Analysis
    slop_threshold: float = Field(default=5.0, ge=1.0)
    leaderboard_update_cycle: int = Field(default=10, ge=1)
    pruning_cycle: int = Field(default=20, ge=5)
    ngram_max: int = Field(default=7, ge=3, le=20)
    pattern_min_common: int = Field(default=2, ge=2, le=10)
    blacklist: dict[str, int] = Field(
        default_factory=lambda: {
            "ozone": 3,
            "whisper": 3,
            "shivers": 3,
            "obsidian": 3,
            "white knuckles": 3,
            "head ducked": 3,
        }
    )

    # Pipeline
    pipeline_enabled: bool = False
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    # Rule storage
    dynamic_rules: list[dict[str, Any]] = Field(default_factory=list)
    static_rule_overrides: dict[str, dict[str, bool]] = Field(default_factory=dict)

    def to_persisted(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# File persistence
# ---------------------------------------------------------------------------


class SettingsFile:
    """JSON file holding the persisted settings; doubles as a ``Persister``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Settings file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {self.path} must contain a JSON object")
        return data

    def load(self) -> Settings:
        try:
            return Settings.model_validate(self._read())
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid settings in {self.path}: {exc}") from exc

    def persist(self, patch: dict[str, Any]) -> None:
        data = self._read()
        data.update(patch)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug(f"Persisted settings keys {sorted(patch)} to {self.path}")
