"""
Budget Evaluator Interface

Budget math (spend per period, thresholds, "alert already raised" flags)
belongs to the budget feature. The notifier only consumes its verdict.
"""

from abc import ABC, abstractmethod

from taxledger.models.notification import BudgetAlert


class BudgetEvaluatorInterface(ABC):
    """Source of budget alerts."""

    @abstractmethod
    async def check_and_trigger_alerts(self) -> list[BudgetAlert]:
        """
        Budgets whose spend ratio has crossed their alert threshold.

        Implementations may keep their own "alert sent" flags; the notifier
        dedups independently on its own log.
        """
        pass


class NoBudgetEvaluator(BudgetEvaluatorInterface):
    """Evaluator for setups without budgets. Never alerts."""

    async def check_and_trigger_alerts(self) -> list[BudgetAlert]:
        return []
