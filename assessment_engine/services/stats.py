import logging
from typing import Dict

from assessment_engine.models.orm import AnswerRecord, Attempt
from assessment_engine.services.store import AssessmentStore

logger = logging.getLogger(__name__)


class StatsAggregator:
    """
    Per-question usage and correctness counters.

    Increments are applied as atomic UPDATE statements inside the caller's
    transaction. The aggregator does not deduplicate; the attempt tracker calls
    it once, at the completed transition.
    """

    def __init__(self, store: AssessmentStore):
        self.store = store

    def apply_completed_attempt(self, attempt: Attempt, answers: Dict[int, AnswerRecord]) -> int:
        """Bump counters for every answered snapshot question. Returns how many were counted."""
        outcomes = [(qid, bool(answers[qid].is_correct)) for qid in attempt.question_ids if qid in answers]
        self.store.increment_question_stats(outcomes)
        logger.debug("Stats applied for attempt=%s answered=%d", attempt.id, len(outcomes))
        return len(outcomes)
