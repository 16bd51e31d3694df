"""Incremental repetition tracking over a stream of generated messages."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from data_designer_prose_polisher.normalizer import Ngram, iter_ngrams, lemmatize, tokenize

if TYPE_CHECKING:
    from data_designer_prose_polisher.settings import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Hyperparameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Hyperparameters:
    """Analysis constants the host does not expose as settings."""

    min_stem_length: int = 3
    context_max_words: int = 40
    leaderboard_size: int = 10


DEFAULT_HYPERPARAMETERS = Hyperparameters()


@dataclass(frozen=True)
class AnalysisThresholds:
    slop_threshold: float = 5.0
    pruning_cycle: int = 20
    ngram_max: int = 7
    pattern_min_common: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> AnalysisThresholds:
        return cls(
            slop_threshold=settings.slop_threshold,
            pruning_cycle=settings.pruning_cycle,
            ngram_max=settings.ngram_max,
            pattern_min_common=settings.pattern_min_common,
        )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class NgramRecord:
    key: str
    original: str
    context_sentence: str
    score: float = 0.0
    count: int = 0
    last_seen_turn: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "key": self.key,
            "original": self.original,
            "contextSentence": self.context_sentence,
            "score": self.score,
            "count": self.count,
            "lastSeenTurn": self.last_seen_turn,
        }


def _blacklist_keys(blacklist: Mapping[str, int], min_stem: int) -> dict[str, int]:
    keys = {}
    for term, weight in blacklist.items():
        lemmas = [lemmatize(t, min_stem) for t in tokenize(term)]
        if lemmas:
            keys[" ".join(lemmas)] = int(weight)
    return keys


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class FrequencyStore:
    """Normalized n-gram key -> ``NgramRecord``.

    ``processed_messages`` doubles as the turn clock: a record's
    ``last_seen_turn`` is the value of the counter after the message that last
    contained it was recorded.
    """

    def __init__(
        self,
        thresholds: AnalysisThresholds | None = None,
        blacklist: Mapping[str, int] | None = None,
        hyperparameters: Hyperparameters | None = None,
    ):
        self.thresholds = thresholds or AnalysisThresholds()
        self.hp = hyperparameters or DEFAULT_HYPERPARAMETERS
        self.records: dict[str, NgramRecord] = {}
        self.processed_messages = 0
        self._blacklist = _blacklist_keys(blacklist or {}, self.hp.min_stem_length)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, key: str) -> bool:
        return key in self.records

    def get(self, key: str) -> NgramRecord | None:
        return self.records.get(key)

    def _weight(self, key: str) -> float:
        padded = f" {key} "
        bonus = sum(w for term, w in self._blacklist.items() if f" {term} " in padded)
        return 1.0 + bonus

    def _is_more_illustrative(self, new: str, current: str) -> bool:
        cap = self.hp.context_max_words
        new_words = len(new.split())
        if new_words > cap:
            return False
        return new_words > len(current.split()) or len(current.split()) > cap

    def record_message(self, text: str) -> int:
        """Fold one message into the store. Returns the number of distinct keys touched.

        Any non-blank message advances the turn clock, even one with no words.
        """
        if not text or not text.strip():
            return 0

        occurrences: Counter[str] = Counter()
        first_seen: dict[str, Ngram] = {}
        for gram in iter_ngrams(text, self.thresholds.ngram_max, self.hp.min_stem_length):
            occurrences[gram.key] += 1
            first_seen.setdefault(gram.key, gram)

        self.processed_messages += 1
        turn = self.processed_messages
        for key, n in occurrences.items():
            gram = first_seen[key]
            record = self.records.get(key)
            if record is None:
                record = NgramRecord(key=key, original=gram.surface, context_sentence=gram.sentence)
                self.records[key] = record
            elif self._is_more_illustrative(gram.sentence, record.context_sentence):
                record.context_sentence = gram.sentence
            record.score += n * self._weight(key)
            record.count += n
            record.last_seen_turn = turn
        return len(occurrences)

    def prune_stale(self, current_turn: int | None = None) -> int:
        """Drop records last seen more than ``pruning_cycle`` turns before ``current_turn``."""
        turn = self.processed_messages if current_turn is None else current_turn
        cutoff = turn - self.thresholds.pruning_cycle
        stale = [key for key, record in self.records.items() if record.last_seen_turn < cutoff]
        for key in stale:
            del self.records[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale n-grams (cutoff turn {cutoff})")
        return len(stale)

    def rank_candidates(self) -> list[str]:
        """Keys that crossed the repetition thresholds, most repetitive first.

        A candidate that sits inside a longer candidate seen at least as
        often is dropped: it never occurred outside that longer phrase.
        """
        th = self.thresholds
        eligible = [
            r for r in self.records.values()
            if r.score >= th.slop_threshold and r.count >= th.pattern_min_common
        ]
        eligible.sort(key=lambda r: (-r.score, -r.last_seen_turn, r.key))

        kept: list[NgramRecord] = []
        for record in eligible:
            padded = f" {record.key} "
            subsumed = any(
                other is not record
                and len(other.key) > len(record.key)
                and other.count >= record.count
                and padded in f" {other.key} "
                for other in eligible
            )
            if not subsumed:
                kept.append(record)
        return [r.key for r in kept]

    def leaderboard(self, limit: int | None = None) -> list[NgramRecord]:
        limit = self.hp.leaderboard_size if limit is None else limit
        return [self.records[key] for key in self.rank_candidates()[:limit]]

    def find_by_original(self, original: str) -> NgramRecord | None:
        for record in self.records.values():
            if record.original == original:
                return record
        target = original.strip().lower()
        for record in self.records.values():
            if record.original.lower() == target:
                return record
        return None

    def consume(self, original: str) -> bool:
        """Reset the score of the record a synthesized rule now covers."""
        record = self.find_by_original(original)
        if record is None:
            return False
        record.score = 0.0
        return True

    def candidate_payloads(self, keys: list[str]) -> list[dict[str, str]]:
        """``{"candidate", "enhanced_context"}`` pairs in ``keys`` order."""
        payloads = []
        for key in keys:
            record = self.records.get(key)
            if record is not None:
                payloads.append({"candidate": record.original, "enhanced_context": record.context_sentence})
        return payloads


def summarize_leaderboard(records: list[NgramRecord]) -> str:
    return ", ".join(f"{r.original!r}={r.score:g}" for r in records) or "(empty)"
