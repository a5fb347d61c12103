#!/usr/bin/env python3
"""
Unit tests for the continuous optimizers.

Tests:
- Bounded search point encoding into [0, 10]
- Termination criteria on their boundaries
- CMA-ES and JADE on a sphere function
- Status dump and restore of both optimizers

Run with:
    python tests/test_optimization.py
"""

import math
import os
import sys
import tempfile

import torch

# Add src to PYTHONPATH
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from algotune.errors import PreconditionViolation
from algotune.optimization import (
    BoundedSearchPoint,
    CmaEs,
    CmaEsConfiguration,
    CmaEsElements,
    ConditionCov,
    DifferentialEvolution,
    DifferentialEvolutionConfiguration,
    MaxIterations,
    NoEffectAxis,
    NoEffectCoord,
    SearchPoint,
    SearchPointSorter,
    TolUpSigma,
)
from algotune.randomizer import Randomizer


class SphereSorter(SearchPointSorter):
    """Sorts by squared distance to the origin."""

    def __init__(self):
        self.sorted_batches = 0

    def sort(self, points):
        self.sorted_batches += 1
        return sorted(range(len(points)), key=lambda i: float((points[i].values ** 2).sum()))


def sphere(point):
    return float((point.values ** 2).sum())


def complete_elements(covariances, step_size=1.0, mean=None, generation=0, initial_step_size=1.0):
    """Fully specified CMA-ES state for termination criteria."""
    dimension = covariances.shape[0]
    mean = torch.zeros(dimension, dtype=torch.float64) if mean is None else mean
    return CmaEsElements(
        CmaEsConfiguration(10, mean, initial_step_size),
        generation,
        mean,
        step_size,
        covariances,
        torch.linalg.eigh(covariances),
        torch.zeros(dimension, dtype=torch.float64),
        torch.zeros(dimension, dtype=torch.float64),
    )


def test_bounded_search_point_encoding():
    """Test that standardize and map_into_bounds are inverse to each other."""
    lower = torch.tensor([0.0, -5.0, 2.0], dtype=torch.float64)
    upper = torch.tensor([1.0, 5.0, 2.0], dtype=torch.float64)
    values = torch.tensor([0.25, 4.0, 2.0], dtype=torch.float64)

    encoded = BoundedSearchPoint.standardize_values(values, lower, upper)
    assert bool(((encoded >= 0) & (encoded <= 10)).all()), f"Encoded values outside [0, 10]: {encoded}"
    assert float(encoded[2]) == 0.0, "Degenerate bounds encode to 0"

    decoded = BoundedSearchPoint(encoded, lower, upper).map_into_bounds()
    assert torch.allclose(decoded, values, atol=1e-9), f"Got {decoded}"

    # any real value decodes into bounds
    far = BoundedSearchPoint(torch.tensor([-37.0, 123.4, 5.0], dtype=torch.float64), lower, upper).map_into_bounds()
    assert bool(((far >= lower - 1e-12) & (far <= upper + 1e-12)).all())

    print("PASS: Bounded search point encoding round trip")


def test_bounded_search_point_preconditions():
    """Test bound validation."""
    lower = torch.tensor([0.0, 0.0], dtype=torch.float64)
    cases = [
        ([1.0], lower, torch.tensor([1.0, 1.0])),
        ([1.0, 1.0], lower, torch.tensor([1.0, -1.0])),
        ([1.0, 1.0], lower, torch.tensor([1.0, float("inf")])),
        ([1.0, 1.0], lower, torch.tensor([1.0])),
    ]
    for values, lower_bounds, upper_bounds in cases:
        try:
            BoundedSearchPoint(values, lower_bounds, upper_bounds)
            assert False, f"Bounds {lower_bounds} / {upper_bounds} should be rejected"
        except PreconditionViolation:
            pass

    print("PASS: Invalid bounds are rejected")


def test_condition_cov_boundary():
    """Test that ConditionCov fires only above the maximum condition number."""
    criterion = ConditionCov()
    at_limit = torch.diag(torch.tensor([ConditionCov.MAX_CONDITION, 1.0], dtype=torch.float64))
    above_limit = torch.diag(torch.tensor([ConditionCov.MAX_CONDITION * 1.01, 1.0], dtype=torch.float64))

    assert not criterion.is_met(CmaEsElements(covariances=at_limit))
    assert criterion.is_met(CmaEsElements(covariances=above_limit))
    assert not criterion.is_met(CmaEsElements(covariances=torch.eye(3, dtype=torch.float64)))

    try:
        criterion.is_met(CmaEsElements())
        assert False, "Missing covariances should be rejected"
    except PreconditionViolation:
        pass

    print("PASS: ConditionCov boundary")


def test_tol_up_sigma_boundary():
    """Test that TolUpSigma compares sigma / sigma_0 with the largest axis."""
    criterion = TolUpSigma()
    covariances = torch.diag(torch.tensor([42.3, 1.0], dtype=torch.float64))
    initial_step_size = 0.2
    limit = TolUpSigma.MAX_FACTOR * math.sqrt(42.3) * initial_step_size

    at_limit = complete_elements(covariances, step_size=limit, initial_step_size=initial_step_size)
    above = complete_elements(covariances, step_size=limit + 0.1, initial_step_size=initial_step_size)
    below = complete_elements(covariances, step_size=0.999 * limit, initial_step_size=initial_step_size)
    assert not criterion.is_met(at_limit), "Reaching the limit exactly does not stop CMA-ES"
    assert criterion.is_met(above)
    assert not criterion.is_met(below)

    try:
        criterion.is_met(CmaEsElements(covariances=covariances))
        assert False, "Incomplete data should be rejected"
    except PreconditionViolation:
        pass

    print("PASS: TolUpSigma boundary")


def test_max_iterations():
    """Test the generation bound."""
    criterion = MaxIterations(5)
    assert not criterion.is_met(CmaEsElements(generation=4))
    assert criterion.is_met(CmaEsElements(generation=5))

    try:
        MaxIterations(0)
        assert False, "A maximum below 1 should be rejected"
    except ValueError:
        pass

    print("PASS: MaxIterations boundary")


def test_no_effect_criteria():
    """Test that steps lost to floating point precision stop CMA-ES."""
    covariances = torch.eye(2, dtype=torch.float64)
    huge_mean = torch.tensor([1e20, 1e20], dtype=torch.float64)

    assert NoEffectAxis().is_met(complete_elements(covariances, mean=huge_mean))
    assert NoEffectCoord().is_met(complete_elements(covariances, mean=huge_mean))
    assert not NoEffectAxis().is_met(complete_elements(covariances))
    assert not NoEffectCoord().is_met(complete_elements(covariances))

    print("PASS: NoEffectAxis and NoEffectCoord")


def test_cmaes_minimizes_sphere():
    """Test that CMA-ES moves its mean towards the optimum."""
    sorter = SphereSorter()
    cmaes = CmaEs(sorter, SearchPoint, Randomizer(seed=11))
    mean = torch.tensor([3.0, -3.0], dtype=torch.float64)

    try:
        cmaes.next_generation()
        assert False, "next_generation before initialize should fail"
    except RuntimeError:
        pass

    try:
        cmaes.initialize(CmaEsConfiguration(8, mean, 1.0), [])
        assert False, "Empty termination criteria should be rejected"
    except ValueError:
        pass

    cmaes.initialize(CmaEsConfiguration(8, mean, 1.0), [MaxIterations(40)])
    best = None
    while not cmaes.any_termination_criterion_met():
        points = cmaes.next_generation()
        assert len(points) == 8
        scores = [sphere(point) for point in points]
        assert scores == sorted(scores), "Points must be returned best first"
        best = scores[0]

    assert cmaes.generation == 40
    final_mean = cmaes.wrap_data().distribution_mean
    assert float(torch.linalg.norm(final_mean)) < 0.5, f"Mean did not converge: {final_mean}"
    assert best < 0.25

    print("PASS: CMA-ES minimizes the sphere function")


def test_cmaes_status_round_trip():
    """Test that a restored CMA-ES continues from the dumped state."""
    cmaes = CmaEs(SphereSorter(), SearchPoint, Randomizer(seed=12))
    cmaes.initialize(CmaEsConfiguration(6, [1.0, 2.0, 3.0], 0.5), [MaxIterations(10), TolUpSigma()])
    for _ in range(3):
        cmaes.next_generation()

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "status.cmaes.json")
        cmaes.dump_status(path)

        restored = CmaEs(SphereSorter(), SearchPoint, Randomizer(seed=99))
        restored.use_status_dump(path)

    original = cmaes.wrap_data()
    data = restored.wrap_data()
    assert data.generation == 3
    assert data.step_size == original.step_size
    assert torch.allclose(data.distribution_mean, original.distribution_mean)
    assert torch.allclose(data.covariances, original.covariances)
    assert data.configuration.population_size == 6
    assert data.is_completely_specified()
    assert not restored.any_termination_criterion_met()

    restored.next_generation()
    assert restored.generation == 4

    print("PASS: CMA-ES status round trip")


def test_differential_evolution_improves():
    """Test that JADE never loses a slot's quality and improves overall."""
    rng = Randomizer(seed=13)
    points = [
        SearchPoint([rng.sample_uniform(-5, 5), rng.sample_uniform(-5, 5)])
        for _ in range(10)
    ]
    initial_total = sum(sphere(point) for point in points)
    initial_best = min(sphere(point) for point in points)

    jade = DifferentialEvolution(
        SphereSorter(),
        lambda values, target: SearchPoint(values),
        DifferentialEvolutionConfiguration(best_percentage=0.2),
        rng,
    )

    try:
        jade.initialize([], 5)
        assert False, "Empty population should be rejected"
    except ValueError:
        pass

    jade.initialize(points, 30)
    population = None
    while not jade.any_termination_criterion_met():
        population = jade.next_generation()
        scores = [sphere(point) for point in population]
        assert scores == sorted(scores), "Population must be returned best first"

    assert jade.current_generation == 30
    assert min(scores) <= initial_best
    assert sum(scores) < initial_total
    assert 0 < jade.mean_mutation_factor <= 1
    assert 0 <= jade.mean_crossover_rate <= 1

    print("PASS: JADE improves the population")


def test_differential_evolution_converged_population_terminates():
    """Test the distance-to-best criterion."""
    points = [SearchPoint([1.0, 1.0]) for _ in range(4)]
    jade = DifferentialEvolution(
        SphereSorter(),
        lambda values, target: SearchPoint(values),
        DifferentialEvolutionConfiguration(),
        Randomizer(seed=14),
    )
    jade.initialize(points, 100)

    assert jade.any_termination_criterion_met()

    print("PASS: Converged population terminates JADE")


def test_differential_evolution_status_round_trip():
    """Test JADE status dump and restore."""
    rng = Randomizer(seed=15)
    points = [SearchPoint([rng.sample_uniform(-1, 1)]) for _ in range(5)]
    jade = DifferentialEvolution(
        SphereSorter(),
        lambda values, target: SearchPoint(values),
        DifferentialEvolutionConfiguration(),
        rng,
    )
    jade.initialize(points, 10)
    before = [sphere(point) for point in jade.next_generation()]

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "status.de.json")
        jade.dump_status(path)

        restored = DifferentialEvolution(
            SphereSorter(),
            lambda values, target: SearchPoint(values),
            DifferentialEvolutionConfiguration(),
            Randomizer(seed=16),
        )
        restored.use_status_dump(path)

    assert restored.current_generation == 1
    assert restored.mean_mutation_factor == jade.mean_mutation_factor
    assert restored.mean_crossover_rate == jade.mean_crossover_rate
    after = [sphere(point) for point in restored.next_generation()]
    assert min(after) <= min(before)

    print("PASS: JADE status round trip")


def run_all_tests():
    """Run all optimizer tests."""
    print("\n" + "=" * 60)
    print("  Continuous Optimizer Unit Tests")
    print("=" * 60 + "\n")

    tests = [
        test_bounded_search_point_encoding,
        test_bounded_search_point_preconditions,
        test_condition_cov_boundary,
        test_tol_up_sigma_boundary,
        test_max_iterations,
        test_no_effect_criteria,
        test_cmaes_minimizes_sphere,
        test_cmaes_status_round_trip,
        test_differential_evolution_improves,
        test_differential_evolution_converged_population_terminates,
        test_differential_evolution_status_round_trip,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            print(f"\nRunning: {test.__name__}")
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}")
            print(f"  Error: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "=" * 60)
    print(f"  Results: {passed} passed, {failed} failed")
    print("=" * 60 + "\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
