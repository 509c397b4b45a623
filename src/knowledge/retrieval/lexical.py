"""Lexical matching primitives shared by every scorer.

Free text is reduced to a normalized keyword set: lowercased, punctuation
stripped (accented letters kept), words shorter than three characters dropped,
and English + Portuguese stop words removed. On top of that sit the phrase,
tag, and question matchers used by the knowledge and methodology scorers,
plus the looser matchers that only feed the debug trace.

Everything here is pure and deterministic. Keyword extraction is memoized
because the same trigger phrases are re-tokenized on every query.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from functools import lru_cache

# ── Stop words (English + Portuguese) ──────────────────────────────────────

STOP_WORDS = frozenset({
    # English
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare",
    "ought", "used", "to", "of", "in", "for", "on", "with", "at", "by",
    "from", "as", "into", "through", "during", "before", "after", "above",
    "below", "between", "under", "again", "further", "then", "once", "here",
    "there", "when", "where", "why", "how", "all", "each", "few", "more",
    "most", "other", "some", "such", "no", "nor", "not", "only", "own",
    "same", "so", "than", "too", "very", "just", "and", "but", "if", "or",
    "because", "until", "while", "although", "though",
    "i", "me", "my", "myself", "we", "our", "ours", "ourselves", "you",
    "your", "yours", "yourself", "yourselves", "he", "him", "his", "himself",
    "she", "her", "hers", "herself", "it", "its", "itself", "they", "them",
    "their", "theirs", "themselves", "what", "which", "who", "whom", "this",
    "that", "these", "those", "am",
    # Portuguese
    "o", "os", "as", "um", "uma", "uns", "umas", "de", "da", "do", "das",
    "dos", "em", "na", "no", "nas", "nos", "por", "para", "com", "sem",
    "sob", "sobre", "entre", "até", "após", "desde", "durante", "perante",
    "que", "se", "não", "mais", "muito", "já", "também", "só", "seu", "sua",
    "seus", "suas", "meu", "minha", "meus", "minhas", "ele", "ela", "eles",
    "elas", "nós", "vós", "eu", "tu", "você", "vocês", "esse", "essa",
    "esses", "essas", "este", "esta", "estes", "estas", "isso", "isto",
    "aquele", "aquela", "aqueles", "aquelas", "aquilo",
})

MIN_KEYWORD_LENGTH = 3
PARTIAL_MATCH_WEIGHT = 0.5

# \w is unicode-aware, so accented letters survive
_NON_WORD = re.compile(r"[^\w\s]")


@lru_cache(maxsize=8192)
def extract_keywords(text: str) -> frozenset[str]:
    """Tokenize text into its normalized keyword set.

    Args:
        text: Free text in any casing.

    Returns:
        Lowercased keywords of at least three characters, stop words removed.
    """
    if not text:
        return frozenset()
    normalized = _NON_WORD.sub(" ", text.lower())
    return frozenset(
        word
        for word in normalized.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    )


def is_partial_match(keyword: str, word: str) -> bool:
    """Singular/plural-tolerant prefix match between two keywords.

    Either word, minus its last character, prefixes the other one
    ("payment" ~ "payments", "parcela" ~ "parcelas").
    """
    return word.startswith(keyword[:-1]) or keyword.startswith(word[:-1])


def phrase_match_score(message_keywords: frozenset[str], phrase: str) -> float:
    """Fraction of a phrase's keywords present in the message.

    Exact keyword hits count 1, prefix-tolerant hits count 0.5.

    Returns:
        Score in [0, 1]; 0 when the phrase has no keywords.
    """
    phrase_keywords = extract_keywords(phrase)
    if not phrase_keywords:
        return 0.0

    matches = 0.0
    for keyword in phrase_keywords:
        if keyword in message_keywords:
            matches += 1
        elif any(is_partial_match(keyword, word) for word in message_keywords):
            matches += PARTIAL_MATCH_WEIGHT
    return min(matches / len(phrase_keywords), 1.0)


def best_phrase_score(
    message_keywords: frozenset[str], phrases: Iterable[str]
) -> float:
    """Best single-phrase score across all trigger phrases.

    The maximum, not the average: one well-matched phrase qualifies.
    """
    return max(
        (phrase_match_score(message_keywords, phrase) for phrase in phrases),
        default=0.0,
    )


def tag_match_score(message_keywords: frozenset[str], tags: list[str]) -> float:
    """Fraction of semantic tags matched by the message keywords.

    A tag equal to a message keyword counts 1; a tag containing, or contained
    in, a message keyword counts 0.5.

    Returns:
        Score in [0, 1]; 0 when there are no tags.
    """
    if not tags:
        return 0.0

    matches = 0.0
    for tag in tags:
        tag_lower = tag.lower()
        if tag_lower in message_keywords:
            matches += 1
        elif any(
            tag_lower in word or word in tag_lower for word in message_keywords
        ):
            matches += PARTIAL_MATCH_WEIGHT
    return min(matches / len(tags), 1.0)


def question_match_score(message_lower: str, question_types: list[str]) -> float:
    """Fraction of question patterns found literally in the message."""
    if not question_types:
        return 0.0
    matches = sum(1 for q in question_types if q.lower() in message_lower)
    return min(matches / len(question_types), 1.0)


def exact_overlap_ratio(message_keywords: frozenset[str], phrase: str) -> float:
    """Fraction of a phrase's keywords present verbatim in the message.

    Returns:
        Ratio in [0, 1]; 0 when the phrase has no keywords.
    """
    phrase_keywords = extract_keywords(phrase)
    if not phrase_keywords:
        return 0.0
    return len(phrase_keywords & message_keywords) / len(phrase_keywords)


def matched_substrings(message_lower: str, needles: Iterable[str]) -> list[str]:
    """Return the needles that occur literally in the lowercased message."""
    return [needle for needle in needles if needle.lower() in message_lower]


# ── Debug-trace matchers ───────────────────────────────────────────────────


def find_matched_triggers(message: str, trigger_phrases: list[str]) -> list[str]:
    """Trigger phrases whose words are at least half present in the message.

    Looser than the scorer (plain whitespace words, no stop-word removal);
    only used to explain a retrieval in the debug trace.
    """
    message_words = {w for w in message.lower().split() if len(w) > 2}
    matched: list[str] = []
    for phrase in trigger_phrases:
        phrase_words = [w for w in phrase.lower().split() if len(w) > 2]
        if not phrase_words:
            continue
        match_count = sum(1 for w in phrase_words if w in message_words)
        if match_count >= math.ceil(len(phrase_words) * 0.5):
            matched.append(phrase)
    return matched


def find_matched_tags(message: str, semantic_tags: list[str]) -> list[str]:
    """Semantic tags that appear as substrings of the message."""
    return matched_substrings(message.lower(), semantic_tags)
