"""
Scoring of learned rules against a transaction.

A rule's score is the larger of:
- the confidence-weighted fraction of its conditions that match, and
- the best token overlap between the description and one of the
  assignments the rule was learned from (its exemplars).

A rule fires when its score is strictly above the firing threshold.
"""
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from spending_tagger.domain.models import Transaction
from spending_tagger.domain.rules import LearnedRule

DEFAULT_FIRING_THRESHOLD = 0.5
DEFAULT_WORD_MIN_LENGTH = 3


def word_tokens(text: str, min_length: int = DEFAULT_WORD_MIN_LENGTH) -> Tuple[str, ...]:
    """Lowercased whitespace-separated words of at least `min_length` chars"""
    return tuple(word for word in (text or "").lower().split() if len(word) >= min_length)


@dataclass(frozen=True)
class LearnedMatch:
    rule: LearnedRule
    score: float


def condition_score(rule: LearnedRule, transaction: Transaction) -> float:
    """Sum of matched condition confidences over the sum of all of them"""
    total = sum(condition.confidence for condition in rule.conditions)
    if total <= 0:
        return 0.0
    matched = sum(
        condition.confidence
        for condition in rule.conditions
        if condition.matches(transaction)
    )
    return matched / total


def exemplar_score(rule: LearnedRule, tokens: Sequence[str]) -> float:
    best = 0.0
    own = set(tokens)
    for exemplar in rule.exemplars:
        other = set(exemplar)
        if not own or not other:
            continue
        best = max(best, len(own & other) / max(len(own), len(other)))
    return best


def score_rule(rule: LearnedRule, transaction: Transaction) -> float:
    # Exemplar overlap lets a rule learned from "Netflix subscription payment"
    # and "Spotify premium subscription" fire on "Another Netflix payment",
    # where no condition matches.
    return max(
        condition_score(rule, transaction),
        exemplar_score(rule, word_tokens(transaction.description)),
    )


def rank_matches(
    rules: Iterable[LearnedRule],
    transaction: Transaction,
    threshold: float = DEFAULT_FIRING_THRESHOLD,
) -> List[LearnedMatch]:
    """
    Every firing rule, best first.

    Ties on score go to the more confident rule, then alphabetically by
    tag so the order never depends on storage order.
    """
    matches = []
    for rule in rules:
        score = score_rule(rule, transaction)
        if score > threshold:
            matches.append(LearnedMatch(rule, round(score, 4)))

    matches.sort(key=lambda m: (-m.score, -m.rule.confidence, m.rule.tag))
    return matches
