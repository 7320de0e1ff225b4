from abc import ABC, abstractmethod

from monzo_budget.models import CreditorMatchingRule, Transaction


class MatchStrategy(ABC):
    rule_type: str

    @abstractmethod
    def score(self, value: str, rule: CreditorMatchingRule, transaction: Transaction) -> float:
        """Confidence 0-100 that ``value`` (the rule's field on the transaction) matches the rule."""
        pass


def normalize(value: str) -> str:
    return value.strip().lower()
