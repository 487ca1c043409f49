import itertools
import random

import pytest

from itinerary_engine.errors import InputError
from itinerary_engine.schemas import Coordinate, Member, NormalizedPlace
from itinerary_engine.stages import place_selector
from itinerary_engine.stages.place_selector import (
    GeneticParameters,
    build_problem,
    crossover,
    diversity_of,
    efficiency_of,
    fairness_of,
    fitness,
    greedy_select,
    mutate,
    random_candidate,
    round_robin_select,
    select_places,
)


def _np(pid: str, member: str, weight: float = 1.0, lat: float = 35.68, lng: float = 139.76, category: str = "other"):
    return NormalizedPlace(
        id=pid,
        name=pid,
        location=Coordinate(lat=lat, lng=lng),
        category=category,
        member_id=member,
        wish_level=3,
        normalized_weight=weight,
        fairness_factor=1.0,
        relative_importance=0.5,
    )


def _members(*ids: str):
    return [Member(id=mid, name=mid) for mid in ids]


def _pool(per_member: int, member_ids=("a", "b", "c")):
    places = []
    for m_idx, member in enumerate(member_ids):
        for i in range(per_member):
            places.append(
                _np(
                    f"{member}{i}",
                    member,
                    weight=0.3 + 0.1 * ((i + m_idx) % 8),
                    lat=35.6 + 0.01 * i,
                    lng=139.7 + 0.01 * m_idx,
                    category=["cultural", "nature", "restaurant", "shopping"][i % 4],
                )
            )
    return places


def test_fairness_is_perfect_for_even_split():
    problem = build_problem([_np("a1", "a"), _np("b1", "b")], _members("a", "b"), 4, 0.5)
    assert fairness_of(problem, (0, 1)) == pytest.approx(1.0)


def test_fairness_counts_members_with_nothing_selected():
    places = [_np("a1", "a"), _np("a2", "a"), _np("b1", "b")]
    problem = build_problem(places, _members("a", "b"), 4, 0.5)
    assert fairness_of(problem, (0, 1)) == pytest.approx(0.0)


def test_efficiency_and_diversity_scores():
    places = [
        _np("x", "a", lat=0.0, lng=0.0, category="cultural"),
        _np("y", "a", lat=0.0, lng=4.4966, category="nature"),
        _np("z", "a", lat=0.0, lng=0.0, category="nature"),
    ]
    problem = build_problem(places, _members("a"), 5, 0.0)

    assert efficiency_of(problem, (0,)) == 1.0
    assert efficiency_of(problem, (0, 1)) == pytest.approx(0.5, abs=1e-3)
    assert diversity_of(problem, (0, 1, 2)) == pytest.approx(0.2)


def test_fitness_enforces_hard_constraints():
    places = [_np("a1", "a"), _np("a2", "a"), _np("b1", "b")]
    params = GeneticParameters()

    capped = build_problem(places, _members("a", "b"), 1, 0.0)
    assert fitness(capped, (0, 2), params) == 0.0

    strict = build_problem(places, _members("a", "b"), 3, 0.9)
    assert fitness(strict, (0, 1), params) == 0.0

    relaxed = build_problem(places, _members("a", "b"), 3, 0.1)
    assert fitness(relaxed, (0, 2), params) > 0.0
    assert fitness(relaxed, (), params) == 0.0


def test_random_candidate_covers_every_member():
    problem = build_problem(_pool(3), _members("a", "b", "c"), 12, 0.0)
    params = GeneticParameters()
    rng = random.Random(7)

    for _ in range(20):
        candidate = random_candidate(problem, params, rng)
        assert len(candidate) == 6  # floor(0.7 * 9)
        assert len(set(candidate)) == len(candidate)
        owners = {problem.owner_index[idx] for idx in candidate}
        assert owners == {0, 1, 2}


def test_crossover_and_mutation_keep_candidates_valid():
    problem = build_problem(_pool(4), _members("a", "b", "c"), 5, 0.0)
    rng = random.Random(3)

    for _ in range(50):
        first = tuple(rng.sample(range(problem.size), 4))
        second = tuple(rng.sample(range(problem.size), 5))
        child = crossover(first, second, problem.max_total, rng)
        assert len(child) == len(set(child))
        assert 0 < len(child) <= problem.max_total

        mutated = mutate(child, problem, rng)
        assert len(mutated) == len(set(mutated))
        assert 1 <= len(mutated) <= problem.max_total


def test_greedy_respects_threshold_and_cap():
    problem = build_problem(_pool(4), _members("a", "b", "c"), 6, 0.5)
    chosen = greedy_select(problem)

    assert 0 < len(chosen) <= 6
    assert fairness_of(problem, chosen) >= 0.5


def test_round_robin_alternates_members():
    problem = build_problem(_pool(3), _members("a", "b", "c"), 4, 1.0)
    chosen = round_robin_select(problem)

    owners = [problem.owner_index[idx] for idx in chosen]
    assert owners == [0, 1, 2, 0]


def test_genetic_selection_respects_size_and_fairness():
    places = _pool(8)
    result = select_places(places, _members("a", "b", "c"), 2, 3, 0.5, seed=11)

    assert result.strategy == "genetic"
    assert 0 < len(result.selected_places) <= 6
    assert result.fairness_score >= 0.5
    assert sum(result.member_distribution.values()) == len(result.selected_places)
    assert set(result.member_distribution) == {"a", "b", "c"}


def test_genetic_selection_is_reproducible_with_seed():
    places = _pool(6)
    first = select_places(places, _members("a", "b", "c"), 2, 3, 0.4, seed=5)
    second = select_places(places, _members("a", "b", "c"), 2, 3, 0.4, seed=5)

    assert [p.id for p in first.selected_places] == [p.id for p in second.selected_places]


def test_small_trips_go_straight_to_greedy():
    places = [_np("a1", "a", 1.2), _np("b1", "b", 0.8), _np("b2", "b", 0.5)]
    result = select_places(places, _members("a", "b"), 1, 2, 0.3)

    assert result.strategy == "greedy"
    assert len(result.selected_places) <= 2
    assert any("Small trip" in line for line in result.rationale)


def test_time_budget_overrun_falls_back_to_greedy():
    ticks = itertools.count(0, 10)
    result = select_places(
        _pool(5),
        _members("a", "b", "c"),
        2,
        3,
        0.4,
        params=GeneticParameters(time_budget_seconds=1.0),
        clock=lambda: next(ticks),
    )

    assert result.strategy == "greedy"
    assert any("budget" in line for line in result.rationale)
    assert len(result.selected_places) <= 6


def test_genetic_exception_falls_back_to_greedy(monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("population collapsed")

    monkeypatch.setattr(place_selector, "evolve", explode)
    result = select_places(_pool(5), _members("a", "b", "c"), 2, 3, 0.4)

    assert result.strategy == "greedy"
    assert any("RuntimeError" in line for line in result.rationale)


def test_unreachable_threshold_yields_best_effort_round_robin():
    places = _pool(5, member_ids=("a", "b"))
    result = select_places(places, _members("a", "b", "c"), 1, 4, 0.99, seed=1)

    assert result.strategy == "round_robin"
    assert result.best_effort is True
    assert 0 < len(result.selected_places) <= 4
    assert result.member_distribution["c"] == 0


def test_empty_input_selects_nothing():
    result = select_places([], _members("a"), 3, 4, 0.5)

    assert result.selected_places == []
    assert result.strategy == "empty"
    assert result.member_distribution == {"a": 0}


def test_unknown_member_is_rejected():
    with pytest.raises(InputError):
        select_places([_np("x", "ghost")], _members("a"), 1, 1, 0.5)


def test_duplicate_members_do_not_dilute_fairness():
    places = [_np("a1", "a"), _np("b1", "b")]
    with pytest.raises(InputError):
        select_places(places, _members("a", "b", "b"), 1, 2, 0.5)
