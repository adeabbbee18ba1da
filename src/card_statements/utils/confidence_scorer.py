"""
Confidence scoring for parsed statements.
"""

from typing import Any, Dict, List, Optional

from ..models.core import CardDetails, Category, RawTransaction, StatementSummary


DEFAULT_WEIGHTS = {
    'first_attempt': 0.30,
    'field_completeness': 0.30,
    'category_coverage': 0.40,
}

# Points removed per statement-level sanity warning, capped
WARNING_PENALTY = 5.0
MAX_WARNING_PENALTY = 20.0


class ConfidenceScorer:
    """
    Compute a 0-100 confidence score with explainable components.
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        self.weights = dict(DEFAULT_WEIGHTS)
        if weights:
            self.weights.update(weights)

    def assess(self,
               attempts: int,
               max_attempts: int,
               card_details: CardDetails,
               summary: StatementSummary,
               transactions: List[RawTransaction],
               warnings: Optional[List[str]] = None) -> Dict[str, Any]:
        components: List[Dict[str, Any]] = []

        components.append(self._component(
            key='first_attempt',
            score=self._retry_score(attempts, max_attempts),
            details={'attempts': attempts, 'max_attempts': max_attempts},
        ))

        completeness, filled = self._field_completeness(card_details, summary)
        components.append(self._component(
            key='field_completeness',
            score=completeness,
            details={'filled_fields': filled},
        ))

        coverage, recognized = self._category_coverage(transactions)
        components.append(self._component(
            key='category_coverage',
            score=coverage,
            details={'recognized': recognized, 'transactions': len(transactions)},
        ))

        weighted = self._weighted_score(components) * 100
        penalty = min(MAX_WARNING_PENALTY, WARNING_PENALTY * len(warnings or ()))
        score = round(max(0.0, min(100.0, weighted - penalty)), 1)

        return {
            'score': score,
            'label': self._label(score),
            'components': components,
            'warning_penalty': penalty,
        }

    def score(self, *args, **kwargs) -> float:
        return self.assess(*args, **kwargs)['score']

    def _component(self, key: str, score: float, details: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'key': key,
            'score': score,
            'weight': self.weights.get(key, 0.0),
            'details': details,
        }

    @staticmethod
    def _weighted_score(components: List[Dict[str, Any]]) -> float:
        usable = [c for c in components if c['weight'] > 0]
        total_weight = sum(c['weight'] for c in usable)
        if total_weight <= 0:
            return 0.0
        score = sum(c['score'] * c['weight'] for c in usable) / total_weight
        return max(0.0, min(1.0, score))

    @staticmethod
    def _label(score: float) -> str:
        if score >= 80:
            return "High"
        if score >= 60:
            return "Medium"
        return "Low"

    @staticmethod
    def _retry_score(attempts: int, max_attempts: int) -> float:
        if attempts <= 1 or max_attempts <= 1:
            return 1.0
        return max(0.0, 1.0 - (attempts - 1) / max_attempts)

    @staticmethod
    def _field_completeness(card_details: CardDetails, summary: StatementSummary):
        card_fields = (card_details.masked_number, card_details.card_type,
                       card_details.credit_limit, card_details.available_credit)
        filled = sum(1 for v in card_fields if v is not None) + summary.filled_fields()
        total = len(card_fields) + len(summary.__dict__)
        return filled / total, filled

    @staticmethod
    def _category_coverage(transactions: List[RawTransaction]):
        if not transactions:
            return 0.0, 0
        recognized = sum(1 for t in transactions if Category.from_value(t.category_hint) is not None)
        return recognized / len(transactions), recognized
