from rapidfuzz.distance import Levenshtein

from monzo_budget.models import CreditorMatchingRule, Transaction

from .base import MatchStrategy, normalize


class FuzzyMatch(MatchStrategy):
    """Edit-distance similarity, zero once the distance exceeds ``max_distance``."""

    rule_type = "fuzzy"

    def __init__(self, max_distance: int = 3) -> None:
        self.max_distance = max_distance

    def score(self, value: str, rule: CreditorMatchingRule, transaction: Transaction) -> float:
        candidate = normalize(value)
        expected = normalize(rule.value)
        distance = Levenshtein.distance(candidate, expected)
        if distance == 0:
            return 100
        if distance > self.max_distance:
            return 0
        longest = max(len(candidate), len(expected))
        return round((1 - distance / longest) * 100)
