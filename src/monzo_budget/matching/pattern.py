import re

from monzo_budget.logger import get_logger
from monzo_budget.models import CreditorMatchingRule, Transaction

from .base import MatchStrategy

logger = get_logger(__name__)

BASE_SCORE = 70
COVERAGE_WEIGHT = 30


class PatternMatch(MatchStrategy):
    """Regex search; a longer match relative to the value scores higher (70-100)."""

    rule_type = "pattern"

    def score(self, value: str, rule: CreditorMatchingRule, transaction: Transaction) -> float:
        if not rule.pattern or not value:
            return 0
        try:
            match = re.search(rule.pattern, value, re.IGNORECASE)
        except re.error as exc:
            logger.warning("[DEBT] Invalid regex pattern %r on rule %s: %s", rule.pattern, rule.id, exc)
            return 0
        if match is None:
            return 0
        coverage = len(match.group(0)) / len(value)
        return round(BASE_SCORE + coverage * COVERAGE_WEIGHT)
