"""Turn raw prose into comparable n-gram keys.

Two phrasings that differ only in inflection or pronoun ("her breath hitched",
"his breath hitches") collapse onto the same key, while the surface text of
each occurrence is kept for display and for rule generation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "is", "it", "that", "this", "with", "as", "by", "from", "was", "were", "are",
    "be", "been", "has", "have", "had", "not", "no", "do", "does", "did", "will",
    "would", "could", "should", "can", "may", "might", "if", "then", "than", "so",
    "up", "out", "about", "into", "over", "after", "before", "between", "through",
    "just", "also", "very", "more", "most", "some", "any", "each", "every", "all",
    "both", "few", "other", "such", "only", "own", "same", "too", "how", "what",
    "which", "who", "when", "where", "why", "its", "his", "her", "their", "my",
    "your", "our", "he", "she", "they", "i", "you", "we", "him", "them", "me", "us",
    "there", "here", "while", "like", "again", "still", "even",
})

_PRONOUN_CLASSES = {
    "<poss>": frozenset({"his", "her", "their", "my", "your", "its", "our"}),
    "<subj>": frozenset({"he", "she", "they", "i", "you", "we", "it"}),
    "<obj>": frozenset({"him", "them", "me", "us"}),
}
_PRONOUN_LEMMAS = {word: cls for cls, words in _PRONOUN_CLASSES.items() for word in words}

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_WORD_RE = re.compile(r"[A-Za-z0-9]+(?:['’-][A-Za-z0-9]+)*")
_SENTENCE_END_RE = re.compile(r"[.!?][\"'”’)\]*]*(?:\s+|$)")
_PARAGRAPH_RE = re.compile(r"\n\s*\n|\n")
_PUNCT_STRIP_RE = re.compile(r"^[^\w]+|[^\w]+$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Ngram:
    key: str
    surface: str
    size: int
    sentence: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def split_sentences(text: str) -> list[str]:
    sentences: list[str] = []
    for paragraph in _PARAGRAPH_RE.split(text or ""):
        start = 0
        for match in _SENTENCE_END_RE.finditer(paragraph):
            sentence = paragraph[start : match.end()].strip()
            if sentence:
                sentences.append(_WHITESPACE_RE.sub(" ", sentence))
            start = match.end()
        tail = paragraph[start:].strip()
        if tail:
            sentences.append(_WHITESPACE_RE.sub(" ", tail))
    return sentences


def tokenize(text: str) -> list[str]:
    return _WORD_RE.findall(text or "")


def _strip_suffix(word: str, min_stem: int) -> str:
    if word.endswith("ies") and len(word) - 3 >= min_stem - 1:
        return word[:-3] + "y"
    if word.endswith("ied") and len(word) - 3 >= min_stem - 1:
        return word[:-3] + "y"
    if word.endswith("sses"):
        return word[:-2]
    if re.search(r"(?:s|x|z|ch|sh)es$", word) and len(word) - 2 >= min_stem:
        return word[:-2]
    if word.endswith("s") and not word.endswith(("ss", "us", "is")) and len(word) - 1 >= min_stem:
        return word[:-1]
    if word.endswith("ed") and len(word) - 2 >= min_stem:
        return word[:-2]
    if word.endswith("ing") and len(word) - 3 >= min_stem:
        return word[:-3]
    return word


def lemmatize(token: str, min_stem: int = 3) -> str:
    """Reduce a token to a comparison form.

    Pronouns collapse to a class marker, stopwords are only lowercased, and
    everything else loses possessive and common inflectional suffixes.
    """
    word = _PUNCT_STRIP_RE.sub("", token.lower().replace("’", "'"))
    if word.endswith("'s"):
        word = word[:-2]
    if word in _PRONOUN_LEMMAS:
        return _PRONOUN_LEMMAS[word]
    if word in _STOPWORDS or not word.isalpha():
        return word
    return _strip_suffix(word, min_stem)


def is_function_word(lemma: str) -> bool:
    return lemma in _STOPWORDS or lemma.startswith("<")


def iter_ngrams(text: str, ngram_max: int, min_stem: int = 3) -> Iterator[Ngram]:
    """Yield every n-gram of 1..``ngram_max`` tokens, never crossing a sentence boundary.

    N-grams made only of function words are skipped.
    """
    for sentence in split_sentences(text):
        tokens = tokenize(sentence)
        if not tokens:
            continue
        lemmas = [lemmatize(t, min_stem) for t in tokens]
        for n in range(1, min(ngram_max, len(tokens)) + 1):
            for i in range(len(tokens) - n + 1):
                gram = lemmas[i : i + n]
                if all(is_function_word(w) for w in gram):
                    continue
                yield Ngram(
                    key=" ".join(gram),
                    surface=" ".join(tokens[i : i + n]),
                    size=n,
                    sentence=sentence,
                )
