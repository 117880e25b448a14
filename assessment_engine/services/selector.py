"""
Question Selector.

Assembles a question set from the active pool under a difficulty policy (one tier,
a percentage mix, or no constraint) and a points policy. Tier targets come from
largest-remainder apportionment; each tier is then sampled uniformly without
replacement. Nothing is auto-corrected: a contradictory request or a short pool is
an error.
"""
import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional, Tuple

from assessment_engine.core.config import Settings, settings
from assessment_engine.core.errors import ConfigurationError, InsufficientPoolError
from assessment_engine.models.orm import TIERS
from assessment_engine.services.store import AssessmentStore, QuestionFilters

logger = logging.getLogger(__name__)

POINTS_EQUAL = "equal"
POINTS_BY_DIFFICULTY = "byDifficulty"
POINTS_POLICIES = (POINTS_EQUAL, POINTS_BY_DIFFICULTY)

HUNDRED = Decimal(100)


@dataclass
class SelectedItem:
    question_id: int
    difficulty: str
    points: int


@dataclass
class AssembledSet:
    items: List[SelectedItem]
    tier_counts: Dict[str, int]
    params: Dict = field(default_factory=dict)

    @property
    def question_ids(self) -> List[int]:
        return [it.question_id for it in self.items]

    @property
    def total_points(self) -> int:
        return sum(it.points for it in self.items)


def normalize_distribution(distribution: Mapping[str, object], tolerance: float) -> Dict[str, Decimal]:
    """Percentages per tier as Decimals; missing tiers are 0."""
    unknown = sorted(set(distribution) - set(TIERS))
    if unknown:
        raise ConfigurationError("Unknown difficulty tier in distribution", tiers=unknown)
    shares = {}
    for tier in TIERS:
        try:
            value = Decimal(str(distribution.get(tier, 0)))
        except InvalidOperation:
            raise ConfigurationError("Distribution percentages must be numbers", tier=tier)
        if not value.is_finite() or value < 0:
            raise ConfigurationError("Distribution percentages must be non-negative", tier=tier)
        shares[tier] = value
    total = sum(shares.values())
    if abs(total - HUNDRED) > Decimal(str(tolerance)):
        raise ConfigurationError(
            "Distribution must sum to 100", total=float(total), tolerance=tolerance
        )
    return shares


def apportion(question_count: int, distribution: Mapping[str, Decimal]) -> Dict[str, int]:
    """
    Round each tier's quota half up, then push the drift onto the tiers with the
    largest fractional remainder until the counts sum to ``question_count``.

    Equal remainders favour the easier tier: it is first to gain a unit and last
    to lose one. A tier with a 0% share stays at 0.
    """
    quotas = {t: Decimal(question_count) * Decimal(distribution.get(t, 0)) / HUNDRED for t in TIERS}
    counts = {t: int(q.quantize(Decimal(1), rounding=ROUND_HALF_UP)) for t, q in quotas.items()}
    remainders = {t: q - q.to_integral_value(rounding=ROUND_FLOOR) for t, q in quotas.items()}
    rank = {t: i for i, t in enumerate(TIERS)}

    drift = question_count - sum(counts.values())
    if drift > 0:
        # a tier asked for at 0% never receives a leftover unit
        eligible = [t for t in TIERS if quotas[t] > 0]
        order = sorted(eligible, key=lambda t: (-remainders[t], rank[t]))
        i = 0
        while drift > 0:
            counts[order[i % len(order)]] += 1
            drift -= 1
            i += 1
    elif drift < 0:
        order = sorted(TIERS, key=lambda t: (-remainders[t], -rank[t]))
        while drift < 0:
            for tier in order:
                if drift == 0:
                    break
                if counts[tier] > 0:
                    counts[tier] -= 1
                    drift += 1
    return counts


class QuestionSelector:
    def __init__(self, store: AssessmentStore, config: Settings = settings, rng: Optional[random.Random] = None):
        self.store = store
        self.config = config
        self.rng = rng or random.Random()

    def _check_count(self, question_count: int) -> None:
        if question_count < 1 or question_count > self.config.MAX_QUESTION_COUNT:
            raise ConfigurationError(
                "Question count out of range",
                question_count=question_count, minimum=1, maximum=self.config.MAX_QUESTION_COUNT,
            )

    def _points_for(self, points_policy: str):
        if points_policy == POINTS_EQUAL:
            return lambda difficulty: 1
        if points_policy == POINTS_BY_DIFFICULTY:
            weights = self.config.DIFFICULTY_POINT_WEIGHTS
            missing = [t for t in TIERS if int(weights.get(t, 0)) < 1]
            if missing:
                raise ConfigurationError("Point weight table must give every tier at least 1 point", tiers=missing)
            return lambda difficulty: int(weights[difficulty])
        raise ConfigurationError("Unknown points policy", points_policy=points_policy, allowed=list(POINTS_POLICIES))

    def targets(self, question_count: int, difficulty: Optional[str] = None,
                distribution: Optional[Mapping[str, object]] = None) -> Optional[Dict[str, int]]:
        """Per-tier target counts, or None when any difficulty may be drawn."""
        if difficulty is not None and distribution is not None:
            raise ConfigurationError("Specify either a single difficulty or a distribution, not both")
        if distribution is not None:
            shares = normalize_distribution(distribution, self.config.DISTRIBUTION_TOLERANCE)
            return apportion(question_count, shares)
        if difficulty is not None:
            if difficulty not in TIERS:
                raise ConfigurationError("Unknown difficulty", difficulty=difficulty, allowed=TIERS)
            return {t: (question_count if t == difficulty else 0) for t in TIERS}
        return None

    def assemble(self, filters: QuestionFilters, question_count: int, difficulty: Optional[str] = None,
                 distribution: Optional[Mapping[str, object]] = None, points_policy: str = POINTS_EQUAL,
                 randomize: bool = True) -> AssembledSet:
        self._check_count(question_count)
        points_of = self._points_for(points_policy)
        targets = self.targets(question_count, difficulty, distribution)

        drawn: List[Tuple[int, str]] = []
        if targets is None:
            pool = self.store.find_active_question_refs(filters)
            if not pool:
                raise InsufficientPoolError("No active questions match the filters", requested=question_count, available=0)
            if len(pool) < question_count:
                raise InsufficientPoolError(
                    "Not enough questions match the filters", requested=question_count, available=len(pool)
                )
            drawn = self.rng.sample(pool, question_count)
        else:
            # check every tier before drawing so the error lists all shortages
            pools, short = {}, {}
            for tier in TIERS:
                if targets[tier] == 0:
                    continue
                pools[tier] = self.store.find_active_question_refs(filters, tier)
                if len(pools[tier]) < targets[tier]:
                    short[tier] = {"requested": targets[tier], "available": len(pools[tier])}
            if short:
                tier = next(t for t in TIERS if t in short)
                logger.info("Pool too small for tier=%s filters=%s", tier, filters.as_dict())
                raise InsufficientPoolError(
                    f"Not enough active {tier} questions match the filters",
                    tier=tier, requested=short[tier]["requested"], available=short[tier]["available"],
                    shortages=short,
                )
            for tier in TIERS:
                if tier in pools:
                    drawn.extend(self.rng.sample(pools[tier], targets[tier]))

        if randomize:
            self.rng.shuffle(drawn)

        items = [SelectedItem(question_id=qid, difficulty=diff, points=points_of(diff)) for qid, diff in drawn]
        tier_counts = {t: 0 for t in TIERS}
        for it in items:
            tier_counts[it.difficulty] += 1
        params = {
            "filters": filters.as_dict(),
            "question_count": question_count,
            "difficulty": difficulty,
            "distribution": {t: float(v) for t, v in distribution.items()} if distribution is not None else None,
            "points_policy": points_policy,
            "randomize": randomize,
            "tier_targets": targets,
        }
        logger.debug("Assembled %d questions tiers=%s", len(items), tier_counts)
        return AssembledSet(items=items, tier_counts=tier_counts, params=params)
