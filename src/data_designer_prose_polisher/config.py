from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from data_designer.config.column_configs import SingleColumnConfig


class ProsePolisherColumnConfig(SingleColumnConfig):
    """Rewrite a text column with the prose polisher's find/replace rules.

    Applies the bundled static rules (or the rules at ``rules_path``) and any
    ``extra_rules`` in order, then optionally fixes sentence capitalization.
    Each row is polished independently; no model calls are made.

    Attributes:
        target_column: Column whose text is polished.
        rules_path: JSON rule file to use instead of the bundled static rules.
        extra_rules: Additional rules in the persisted shape
            (``scriptName``/``findRegex``/``replaceString``), applied after the static ones.
        capitalize: Uppercase the first letter of every sentence after substitution.
        seed: Seed for ``{{random:...}}`` choices, for reproducible output.
    """

    target_column: str
    rules_path: str | None = Field(default=None, description="Static rule file overriding the bundled rules")
    extra_rules: list[dict[str, Any]] = Field(default_factory=list, description="Rules applied after the static set")
    capitalize: bool = Field(default=True, description="Capitalize sentence starts after substitution")
    seed: int | None = Field(default=None, description="Seed for random replacement choices")
    column_type: Literal["prose-polisher"] = "prose-polisher"

    @staticmethod
    def get_column_emoji() -> str:
        return "✨"

    @property
    def required_columns(self) -> list[str]:
        return [self.target_column]

    @property
    def side_effect_columns(self) -> list[str]:
        return []
