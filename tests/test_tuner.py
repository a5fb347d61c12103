#!/usr/bin/env python3
"""
Unit tests for the tuner loop.

Tests:
- Instance schedule grows linearly up to the goal generation
- Progress tracking and incumbent scores
- End-to-end runs with GGA only, GGA + JADE and GGA + CMA-ES
- Status dump and continuation of a run
- Run log of a tuner with a log directory

Run with:
    python tests/test_tuner.py
"""

import math
import os
import sys
import tempfile

# Add src to PYTHONPATH
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from algotune import (
    AlgorithmTuner,
    AndNode,
    CategoricalDomain,
    CmaEsStrategyConfiguration,
    ConfigurationError,
    ContinuousDomain,
    ContinuousOptimizationMethod,
    ContinuousResult,
    DifferentialEvolutionStrategyConfiguration,
    ImmutableGenome,
    InstanceSelector,
    Logger,
    ParameterTree,
    ProgressTracker,
    Randomizer,
    RuntimeResult,
    SortByPenalizedRuntime,
    TunerConfiguration,
    TunerStatus,
    ValueNode,
)
from algotune.evaluation import IncumbentGenomeWrapper
from algotune.genomes import Genome, Population
from algotune.strategies import DifferentialEvolutionStrategy, GgaStrategy, GlobalCovarianceMatrixAdaptationStrategy
from algotune.tuner import incumbent_score

INSTANCES = list(range(6))


def build_tree():
    return ParameterTree(AndNode([
        ValueNode("x", ContinuousDomain(-5.0, 5.0)),
        ValueNode("y", ContinuousDomain(-5.0, 5.0)),
        ValueNode("mode", CategoricalDomain(["a", "b"])),
    ]))


class QuadraticSolver:
    """Runtime is x^2 + y^2, plus one for mode b, plus a tenth of the instance."""

    def run(self, genome, instance, token):
        x = genome.get_gene_value("x")
        y = genome.get_gene_value("y")
        penalty = 0.0 if genome.get_gene_value("mode") == "a" else 1.0
        return RuntimeResult(x * x + y * y + penalty + 0.1 * instance)


def tuner_configuration(**options):
    settings = dict(
        population_size=8,
        generations=3,
        max_mini_tournament_size=4,
        tournament_winner_percentage=0.5,
        start_number_instances=2,
        end_number_instances=4,
        goal_generation=2,
        maximum_parallel_evaluations=2,
        random_seed=5,
    )
    settings.update(options)
    return TunerConfiguration(**settings)


def create_tuner(configuration, messages=None):
    return AlgorithmTuner(
        QuadraticSolver(),
        SortByPenalizedRuntime(1, 1000.0),
        INSTANCES,
        build_tree(),
        configuration,
        logger=None if messages is None else messages.append,
    )


def test_instance_schedule():
    """Test the linear growth of the instance count."""
    configuration = tuner_configuration(start_number_instances=5, end_number_instances=100, goal_generation=74)
    selector = InstanceSelector(list(range(100)), configuration, Randomizer(0))

    assert selector.number_of_instances(0) == 5
    assert selector.number_of_instances(1) == 6
    assert selector.number_of_instances(10) == 18
    assert selector.number_of_instances(74) == 100
    assert selector.number_of_instances(200) == 100

    chosen = selector.select(1)
    assert len(chosen) == 6 and len(set(chosen)) == 6
    assert all(instance in range(100) for instance in chosen)

    try:
        selector.number_of_instances(-1)
        assert False, "Negative generations should be rejected"
    except ValueError:
        pass

    try:
        InstanceSelector(list(range(10)), configuration, Randomizer(0))
        assert False, "Too few instances should be rejected"
    except ConfigurationError:
        pass

    print("PASS: Instance schedule grows linearly")


def test_progress_tracker():
    """Test best score bookkeeping and the log format."""
    messages = []
    tracker = ProgressTracker(logger=messages.append, minimize=True, prefix="[Tuner]", total_generations=3)

    tracker.tick(3.0, generation=0, phase="GgaStrategy")
    tracker.tick(2.0, generation=1, phase="GgaStrategy")
    stats = tracker.tick(2.5, generation=2, phase="DifferentialEvolutionStrategy")

    assert not stats.improved and stats.best_global == 2.0
    assert tracker.best_generation == 1
    assert [s.improved for s in tracker.history] == [True, True, False]
    assert messages[0] == "[Tuner] [Gen 1/3] (GgaStrategy) best=3.0000, current=3.0000, improved=True"

    summary = tracker.summary()
    assert summary["improvements"] == 2
    assert summary["phases"] == ["DifferentialEvolutionStrategy", "GgaStrategy"]

    maximize = ProgressTracker(logger=messages.append, minimize=False)
    maximize.tick(1.0)
    assert maximize.tick(2.0).improved

    print("PASS: Progress tracker follows the incumbent")


def test_incumbent_score():
    """Test the score used for progress lines."""
    assert math.isnan(incumbent_score({}))
    assert incumbent_score({0: RuntimeResult(1.0), 1: RuntimeResult(3.0)}) == 2.0
    quality = {0: ContinuousResult(1.0, value=4.0), 1: ContinuousResult(1.0, value=6.0), 2: ContinuousResult.create_cancelled_result(5.0)}
    assert incumbent_score(quality) == 5.0

    print("PASS: Incumbent score averages values or runtimes")


def test_gga_only_run():
    """Test a short run with GGA only."""
    messages = []
    with create_tuner(tuner_configuration(), messages) as tuner:
        initial = tuner.initialize_population()
        assert initial.competitive_count == 4 and initial.non_competitive_count == 4
        assert all(1 <= genome.age <= 3 for genome in initial.all_genomes)

        incumbent = tuner.run()

        assert incumbent is not None
        assert len(incumbent.results) >= 2 and set(incumbent.results) <= set(INSTANCES)
        assert tuner.progress.generations_run == 3
        assert tuner.base_population.count == 8
        assert [type(s) for s in tuner.strategies] == [GgaStrategy]

    assert any(message.startswith("[Tuner] [Gen 3/3]") for message in messages)

    print("PASS: GGA-only run finishes")


def test_run_switches_to_jade():
    """Test that GGA hands over to JADE after its generation limit."""
    configuration = tuner_configuration(
        continuous_optimization_method=ContinuousOptimizationMethod.JADE,
        max_gga_generations=1,
    )
    with create_tuner(configuration, []) as tuner:
        tuner.run()

        assert tuner.strategy_index == 1
        assert isinstance(tuner.current_strategy, DifferentialEvolutionStrategy)
        assert [s.phase for s in tuner.progress.history] == [
            "GgaStrategy", "DifferentialEvolutionStrategy", "DifferentialEvolutionStrategy",
        ]
        assert tuner.base_population.competitive_count == 4
        assert tuner.base_population.non_competitive_count == 4

    print("PASS: Run switches from GGA to JADE")


def test_run_switches_to_cma_es():
    """Test that GGA hands over to global CMA-ES and back."""
    configuration = tuner_configuration(
        generations=4,
        continuous_optimization_method=ContinuousOptimizationMethod.CMA_ES,
        max_gga_generations=1,
        cma_es=CmaEsStrategyConfiguration(maximum_number_generations=1, initial_step_size=1.0),
    )
    with create_tuner(configuration, []) as tuner:
        tuner.run()

        assert isinstance(tuner.strategies[1], GlobalCovarianceMatrixAdaptationStrategy)
        assert [s.phase for s in tuner.progress.history] == [
            "GgaStrategy", "GlobalCovarianceMatrixAdaptationStrategy", "GgaStrategy", "GlobalCovarianceMatrixAdaptationStrategy",
        ]
        assert tuner.base_population.competitive_count == 4

    print("PASS: Run alternates between GGA and CMA-ES")


def test_tuner_rejects_inconsistent_setups():
    """Test configuration errors raised by the tuner."""
    try:
        create_tuner(tuner_configuration(end_number_instances=10))
        assert False, "More instances per generation than available should be rejected"
    except ConfigurationError:
        pass

    try:
        create_tuner(tuner_configuration(enable_sexual_selection=True))
        assert False, "Sexual selection without a surrogate model should be rejected"
    except ConfigurationError:
        pass

    print("PASS: Tuner rejects inconsistent setups")


def test_status_dump_and_continue():
    """Test that a run can be continued from its status directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        configuration = tuner_configuration(
            continuous_optimization_method=ContinuousOptimizationMethod.JADE,
            differential_evolution=DifferentialEvolutionStrategyConfiguration(maximum_number_generations=5),
            max_gga_generations=1,
            status_directory=tmpdir,
        )
        with create_tuner(configuration, []) as tuner:
            tuner.run()
            final_generation = tuner.current_generation

        names = sorted(os.listdir(tmpdir))
        assert names == [
            "status.de.json", "status.de_strategy.json", "status.gga.json", "status.tuner.json",
        ], f"Got {names}"

        status, metadata = TunerStatus.load(os.path.join(tmpdir, TunerStatus.FILE_NAME))
        assert metadata["type"] == "TunerStatus"
        # the final generation is not dumped
        assert status.generation == final_generation - 1
        assert status.strategy_index == 1 and status.started_strategies == [0, 1]
        assert status.incumbent is not None

        with create_tuner(configuration, []) as resumed:
            resumed.use_status_dump()
            assert resumed.current_generation == 2
            assert resumed.strategy_index == 1
            assert resumed.incumbent.genome == status.incumbent.genome
            incumbent = resumed.run()

            assert resumed.current_generation == 3
            assert resumed.progress.generations_run == 1
            assert incumbent is not None

    print("PASS: Runs continue from their status dump")


def test_tuner_status_instances():
    """Test that tuple instances survive the status file."""
    configuration = tuner_configuration()
    population = Population(configuration, competitive=[Genome({"x": 1.0}, age=2)])
    incumbent = IncumbentGenomeWrapper(
        ImmutableGenome(Genome({"x": 1.0})),
        3,
        {("cnf", 7): RuntimeResult(2.0), "plain": RuntimeResult.create_cancelled_result(9.0)},
    )

    restored = TunerStatus.deserialize(TunerStatus(4, 0, [0, 0], population, incumbent).serialize())

    assert restored.generation == 4 and restored.started_strategies == [0]
    assert restored.incumbent.generation == 3
    assert restored.incumbent.results == incumbent.results
    assert restored.population.get_competitive_individuals()[0].age == 2

    try:
        TunerStatus(-1, 0, [], population, None)
        assert False, "Negative generations should be rejected"
    except ValueError:
        pass

    print("PASS: Tuner status keeps instances and results")


def test_run_log_file():
    """Test that a run with a log directory writes its run log."""
    with tempfile.TemporaryDirectory() as tmpdir:
        configuration = tuner_configuration(
            continuous_optimization_method=ContinuousOptimizationMethod.JADE,
            max_gga_generations=1,
            log_directory=tmpdir,
        )
        with create_tuner(configuration) as tuner:
            assert tuner.run_log is not None
            tuner.run()
            log_file = tuner.run_log.log_file

        assert os.path.dirname(log_file) == tmpdir
        assert os.path.basename(log_file).startswith("tuning_")
        with open(log_file) as f:
            content = f.read()

    assert "  Configuration" in content
    assert "population_size: 8" in content
    assert "  Phase GgaStrategy from generation 0" in content
    assert "  Phase DifferentialEvolutionStrategy from generation 1" in content
    assert "[Tuner] [Gen 3/3]" in content
    assert "Tuning finished" in content

    with tempfile.TemporaryDirectory() as tmpdir:
        with Logger("tuning", log_dir=tmpdir, console=False) as run_log:
            run_log("Starting tuning")
        run_log("after close")
        with open(run_log.log_file) as f:
            lines = f.read().splitlines()
    assert len(lines) == 1 and lines[0].endswith("| Starting tuning")

    messages = []
    with create_tuner(tuner_configuration(log_directory="unused"), messages) as tuner:
        assert tuner.run_log is None, "A passed logger replaces the run log"

    print("PASS: Run log file is written")


def run_all_tests():
    """Run all tuner tests."""
    print("\n" + "=" * 60)
    print("  Tuner Unit Tests")
    print("=" * 60 + "\n")

    tests = [
        test_instance_schedule,
        test_progress_tracker,
        test_incumbent_score,
        test_gga_only_run,
        test_run_switches_to_jade,
        test_run_switches_to_cma_es,
        test_tuner_rejects_inconsistent_setups,
        test_status_dump_and_continue,
        test_tuner_status_instances,
        test_run_log_file,
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
