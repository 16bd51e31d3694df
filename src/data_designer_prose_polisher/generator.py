from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from data_designer.engine.column_generators.generators.base import ColumnGeneratorFullColumn

from data_designer_prose_polisher.config import ProsePolisherColumnConfig
from data_designer_prose_polisher.rules import (
    Rule,
    apply_rules,
    capitalize_sentences,
    dynamic_rule_from_payload,
    load_static_rules,
)

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)


def load_column_rules(config: ProsePolisherColumnConfig) -> list[Rule]:
    rules = load_static_rules(config.rules_path)
    rules.extend(dynamic_rule_from_payload(payload) for payload in config.extra_rules)
    return [r for r in rules if not r.disabled]


def polish_column(data: pd.DataFrame, config: ProsePolisherColumnConfig) -> pd.DataFrame:
    """Return a copy of ``data`` with ``config.target_column`` polished into ``config.name``."""
    logger.info(f"✨ Polishing column {config.target_column!r} into {config.name!r}")
    rules = load_column_rules(config)
    logger.info(f"   rules: {len(rules)}")
    logger.info(f"   capitalize: {config.capitalize}")

    rng = random.Random(config.seed)
    results = []
    changed = 0
    for value in data[config.target_column]:
        text = "" if value is None else str(value)
        polished = apply_rules(text, rules, rng)
        if config.capitalize:
            polished = capitalize_sentences(polished)
        if polished != text:
            changed += 1
        results.append(polished)
    logger.info(f"   rows changed: {changed}/{len(results)}")

    data = data.copy()
    data[config.name] = results
    return data


class ProsePolisherColumnGenerator(ColumnGeneratorFullColumn[ProsePolisherColumnConfig]):
    """Column generator that rewrites repetitive phrasing with find/replace rules."""

    def generate(self, data: pd.DataFrame) -> pd.DataFrame:
        return polish_column(data, self.config)
