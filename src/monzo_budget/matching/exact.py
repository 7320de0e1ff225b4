from monzo_budget.models import CreditorMatchingRule, Transaction

from .base import MatchStrategy, normalize

EXACT_SCORE = 100
CONTAINS_SCORE = 85


class ExactMatch(MatchStrategy):
    rule_type = "exact"

    def score(self, value: str, rule: CreditorMatchingRule, transaction: Transaction) -> float:
        candidate = normalize(value)
        expected = normalize(rule.value)
        if not candidate or not expected:
            return 0
        if candidate == expected:
            return EXACT_SCORE
        if expected in candidate or candidate in expected:
            return CONTAINS_SCORE
        return 0
