from monzo_budget.models import CreditorMatchingRule, Transaction

from .base import MatchStrategy

EXACT_SCORE = 100
LAST_FOUR_SCORE = 80


class AccountMatch(MatchStrategy):
    rule_type = "account"

    def score(self, value: str, rule: CreditorMatchingRule, transaction: Transaction) -> float:
        account_number = transaction.counterparty.account_number if transaction.counterparty else None
        if not account_number:
            return 0
        expected = rule.value.strip()
        if account_number == expected:
            return EXACT_SCORE
        # Card statements usually only carry the last four digits
        if len(expected) >= 4 and len(account_number) >= 4 and account_number[-4:] == expected[-4:]:
            return LAST_FOUR_SCORE
        return 0
