"""Budget evaluation boundary."""

from taxledger.services.budget.interface import (
    BudgetEvaluatorInterface,
    NoBudgetEvaluator,
)

__all__ = [
    "BudgetEvaluatorInterface",
    "NoBudgetEvaluator",
]
