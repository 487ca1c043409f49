"""Optimal place selection under count and fairness constraints.

The genetic search works on immutable candidates: a candidate is a tuple of
indices into ``SelectionProblem.places``. Every operator (random candidate,
fitness, tournament, crossover, mutation) is a plain function returning a new
value, and :func:`evolve` is the loop that strings them together. Greedy and
round-robin selection are the fallbacks.
"""
from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from itinerary_engine.errors import InfeasibleConstraintError, SearchBudgetExceeded
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import Member, NormalizedPlace, SelectionResult
from itinerary_engine.stages.validation import ensure_trip_inputs
from itinerary_engine.tools.geo import haversine_km

logger = get_logger(__name__)

Candidate = Tuple[int, ...]

EFFICIENCY_REFERENCE_KM = 1000.0
DIVERSITY_REFERENCE_CATEGORIES = 10


@dataclass(frozen=True)
class GeneticParameters:
    population_min: int = 20
    population_max: int = 100
    generations: int = 50
    mutation_rate: float = 0.1
    elite_share: float = 0.2
    tournament_size: int = 3
    target_share: float = 0.7
    fairness_weight: float = 0.3
    efficiency_weight: float = 0.25
    preference_weight: float = 0.25
    diversity_weight: float = 0.2
    time_budget_seconds: float = 5.0
    small_trip_place_count: int = 6

    def population_size(self, place_count: int) -> int:
        return min(self.population_max, max(self.population_min, place_count))

    def elite_count(self, population_size: int) -> int:
        return max(1, int(population_size * self.elite_share))


@dataclass(frozen=True)
class SelectionProblem:
    places: Tuple[NormalizedPlace, ...]
    member_ids: Tuple[str, ...]
    owner_index: Tuple[int, ...]
    max_total: int
    fairness_threshold: float
    distances: Tuple[Tuple[float, ...], ...] = ()

    @property
    def size(self) -> int:
        return len(self.places)


def build_problem(
    places: Sequence[NormalizedPlace],
    members: Sequence[Member],
    max_total: int,
    fairness_threshold: float,
    *,
    with_distances: bool = True,
) -> SelectionProblem:
    member_ids = tuple(member.id for member in members)
    position = {member_id: idx for idx, member_id in enumerate(member_ids)}
    pool = tuple(places)
    distances: Tuple[Tuple[float, ...], ...] = ()
    if with_distances:
        distances = tuple(
            tuple(
                haversine_km(a.location.lat, a.location.lng, b.location.lat, b.location.lng)
                for b in pool
            )
            for a in pool
        )
    return SelectionProblem(
        places=pool,
        member_ids=member_ids,
        owner_index=tuple(position[place.member_id] for place in pool),
        max_total=max_total,
        fairness_threshold=fairness_threshold,
        distances=distances,
    )


# ---------- scoring ----------
def _spread_fairness(values: Sequence[float]) -> float:
    mean = sum(values) / len(values)
    std = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
    return max(0.0, 1 - std / max(mean, 1))


def fairness_of(problem: SelectionProblem, candidate: Sequence[int]) -> float:
    """Blend count-based and weight-based spread across every listed member."""
    if not problem.member_ids:
        return 1.0
    counts = [0.0] * len(problem.member_ids)
    weights = [0.0] * len(problem.member_ids)
    for idx in candidate:
        owner = problem.owner_index[idx]
        counts[owner] += 1
        weights[owner] += problem.places[idx].normalized_weight
    return (_spread_fairness(counts) + _spread_fairness(weights)) / 2


def efficiency_of(problem: SelectionProblem, candidate: Sequence[int]) -> float:
    if len(candidate) <= 1:
        return 1.0
    total = 0.0
    pairs = 0
    for pos, i in enumerate(candidate):
        for j in candidate[pos + 1:]:
            if problem.distances:
                total += problem.distances[i][j]
            else:
                a = problem.places[i].location
                b = problem.places[j].location
                total += haversine_km(a.lat, a.lng, b.lat, b.lng)
            pairs += 1
    return min(1.0, max(0.0, 1 - (total / pairs) / EFFICIENCY_REFERENCE_KM))


def diversity_of(problem: SelectionProblem, candidate: Sequence[int]) -> float:
    categories = {(problem.places[idx].category or "other").lower() for idx in candidate}
    return min(1.0, len(categories) / DIVERSITY_REFERENCE_CATEGORIES)


def fitness(problem: SelectionProblem, candidate: Sequence[int], params: GeneticParameters) -> float:
    if not candidate or len(candidate) > problem.max_total:
        return 0.0
    fairness = fairness_of(problem, candidate)
    if fairness < problem.fairness_threshold:
        return 0.0
    preference = sum(problem.places[idx].normalized_weight for idx in candidate) / len(candidate)
    return (
        fairness * params.fairness_weight
        + efficiency_of(problem, candidate) * params.efficiency_weight
        + preference * params.preference_weight
        + diversity_of(problem, candidate) * params.diversity_weight
    )


# ---------- genetic operators ----------
def target_size(problem: SelectionProblem, params: GeneticParameters) -> int:
    return max(1, min(problem.max_total, int(problem.size * params.target_share)))


def random_candidate(problem: SelectionProblem, params: GeneticParameters, rng: random.Random) -> Candidate:
    """One place per member where possible, then random fill up to the target size."""
    target = target_size(problem, params)
    by_owner: Dict[int, List[int]] = {}
    for idx, owner in enumerate(problem.owner_index):
        by_owner.setdefault(owner, []).append(idx)

    chosen: List[int] = []
    for owner in range(len(problem.member_ids)):
        owned = by_owner.get(owner)
        if owned and len(chosen) < target:
            chosen.append(rng.choice(owned))

    taken = set(chosen)
    remaining = [idx for idx in range(problem.size) if idx not in taken]
    rng.shuffle(remaining)
    chosen.extend(remaining[: max(0, target - len(chosen))])
    return tuple(chosen)


def tournament(scored: Sequence[Tuple[Candidate, float]], rng: random.Random, size: int) -> Candidate:
    entrants = [scored[rng.randrange(len(scored))] for _ in range(size)]
    return max(entrants, key=lambda item: item[1])[0]


def crossover(first: Candidate, second: Candidate, max_total: int, rng: random.Random) -> Candidate:
    shortest = min(len(first), len(second))
    point = rng.randrange(shortest) if shortest else 0
    child = list(first[:point])
    seen = set(child)
    for idx in second:
        if len(child) >= max_total:
            break
        if idx not in seen:
            child.append(idx)
            seen.add(idx)
    return tuple(child)


def mutate(candidate: Candidate, problem: SelectionProblem, rng: random.Random) -> Candidate:
    if not candidate:
        return candidate
    if rng.random() < 0.5 and len(candidate) > 1:
        drop = rng.randrange(len(candidate))
        return candidate[:drop] + candidate[drop + 1:]
    if len(candidate) < problem.max_total:
        present = set(candidate)
        unused = [idx for idx in range(problem.size) if idx not in present]
        if unused:
            return candidate + (rng.choice(unused),)
    return candidate


def evolve(
    problem: SelectionProblem,
    params: GeneticParameters,
    rng: random.Random,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> Tuple[Candidate, float]:
    """Run the generational loop and return the fittest final individual.

    Raises ``SearchBudgetExceeded`` once the wall-clock budget is spent and
    ``InfeasibleConstraintError`` when no individual satisfies the hard
    constraints.
    """
    deadline = clock() + params.time_budget_seconds
    memo: Dict[FrozenSet[int], float] = {}

    def score(candidate: Candidate) -> float:
        key = frozenset(candidate)
        if key not in memo:
            if clock() > deadline:
                raise SearchBudgetExceeded(
                    f"genetic search exceeded {params.time_budget_seconds:.2f}s budget"
                )
            memo[key] = fitness(problem, candidate, params)
        return memo[key]

    population_size = params.population_size(problem.size)
    elite = params.elite_count(population_size)
    population = [random_candidate(problem, params, rng) for _ in range(population_size)]

    for _ in range(params.generations):
        scored = sorted(((ind, score(ind)) for ind in population), key=lambda item: item[1], reverse=True)
        next_population = [ind for ind, _ in scored[:elite]]
        while len(next_population) < population_size:
            first = tournament(scored, rng, params.tournament_size)
            second = tournament(scored, rng, params.tournament_size)
            child = crossover(first, second, problem.max_total, rng)
            if rng.random() < params.mutation_rate:
                child = mutate(child, problem, rng)
            next_population.append(child)
        population = next_population

    best, best_fitness = max(((ind, score(ind)) for ind in population), key=lambda item: item[1])
    if best_fitness <= 0:
        raise InfeasibleConstraintError(
            f"no subset reaches fairness threshold {problem.fairness_threshold:.2f}"
        )
    return best, best_fitness


# ---------- fallbacks ----------
def greedy_select(problem: SelectionProblem) -> Candidate:
    """Highest weight first, keeping the running fairness at or above threshold."""
    order = sorted(
        range(problem.size),
        key=lambda idx: (-problem.places[idx].normalized_weight, problem.places[idx].id),
    )
    chosen: List[int] = []
    for idx in order:
        if len(chosen) >= problem.max_total:
            break
        if fairness_of(problem, chosen + [idx]) >= problem.fairness_threshold:
            chosen.append(idx)
    return tuple(chosen)


def round_robin_select(problem: SelectionProblem) -> Candidate:
    """Each member's best remaining place in turn until the cap is reached."""
    queues: List[List[int]] = [[] for _ in problem.member_ids]
    for idx, owner in enumerate(problem.owner_index):
        queues[owner].append(idx)
    for queue in queues:
        queue.sort(key=lambda idx: (-problem.places[idx].normalized_weight, problem.places[idx].id))

    chosen: List[int] = []
    while len(chosen) < problem.max_total and any(queues):
        for queue in queues:
            if queue and len(chosen) < problem.max_total:
                chosen.append(queue.pop(0))
    return tuple(chosen)


# ---------- entry point ----------
def select_places(
    normalized_places: Sequence[NormalizedPlace],
    members: Sequence[Member],
    trip_duration_days: int,
    max_places_per_day: int,
    fairness_threshold: float,
    *,
    params: Optional[GeneticParameters] = None,
    seed: Optional[int] = None,
    trip_id: str = "adhoc",
    clock: Callable[[], float] = time.monotonic,
) -> SelectionResult:
    params = params or GeneticParameters()
    ensure_trip_inputs(trip_id, normalized_places, members)
    max_total = max(1, trip_duration_days) * max(1, max_places_per_day)
    rationale: List[str] = []

    if not normalized_places:
        rationale.append("No candidate places supplied; nothing to select.")
        return SelectionResult(
            member_distribution={member.id: 0 for member in members},
            strategy="empty",
            rationale=rationale,
        )

    small_trip = len(normalized_places) <= params.small_trip_place_count
    problem = build_problem(normalized_places, members, max_total, fairness_threshold, with_distances=not small_trip)
    strategy = "genetic"
    best_effort = False
    candidate: Candidate = ()

    if small_trip:
        strategy = "greedy"
        rationale.append(
            f"Small trip ({problem.size} places): greedy selection used instead of genetic search."
        )
    else:
        try:
            candidate, best_fitness = evolve(problem, params, random.Random(seed), clock=clock)
            rationale.append(
                f"Genetic search over {problem.size} places selected {len(candidate)} (fitness {best_fitness:.3f})."
            )
        except SearchBudgetExceeded as exc:
            logger.warning("Selector: %s; falling back to greedy for trip %s", exc, trip_id)
            rationale.append(f"Genetic search stopped: {exc}. Greedy fallback used.")
            strategy = "greedy"
        except InfeasibleConstraintError as exc:
            logger.warning("Selector: %s; falling back to greedy for trip %s", exc, trip_id)
            rationale.append(f"Genetic search infeasible: {exc}. Greedy fallback used.")
            strategy = "greedy"
        except Exception as exc:
            logger.warning("Selector: genetic search failed for trip %s", trip_id, exc_info=True)
            rationale.append(f"Genetic search raised {type(exc).__name__}. Greedy fallback used.")
            strategy = "greedy"

    if strategy == "greedy":
        candidate = greedy_select(problem)
        if not candidate:
            candidate = round_robin_select(problem)
            strategy = "round_robin"
            best_effort = True
            rationale.append(
                f"Fairness threshold {fairness_threshold:.2f} unreachable; "
                "round-robin best-effort selection used."
            )
            logger.warning("Selector: best-effort round-robin selection for trip %s", trip_id)

    ordered = tuple(sorted(candidate))
    distribution = {member_id: 0 for member_id in problem.member_ids}
    for idx in ordered:
        distribution[problem.member_ids[problem.owner_index[idx]]] += 1

    fairness = fairness_of(problem, ordered)
    if fairness < fairness_threshold and not best_effort:
        best_effort = True
        rationale.append(f"Selection fairness {fairness:.2f} is below threshold {fairness_threshold:.2f}.")

    result = SelectionResult(
        selected_places=[problem.places[idx] for idx in ordered],
        fairness_score=fairness,
        efficiency_score=efficiency_of(problem, ordered),
        diversity_score=diversity_of(problem, ordered),
        member_distribution=distribution,
        strategy=strategy,
        rationale=rationale,
        best_effort=best_effort,
    )
    logger.info(
        "Selector: trip %s -> %d/%d places via %s (fairness %.3f, efficiency %.3f)",
        trip_id,
        len(result.selected_places),
        problem.size,
        strategy,
        result.fairness_score,
        result.efficiency_score,
    )
    return result
