#!/usr/bin/env python3
"""
Unit tests for the population update strategies.

Tests:
- Rank assignment of the genome assisted sorters
- Search point conversion between genomes and vectors
- JADE information flows (population size checks, incumbent requirement)
- CMA-ES and JADE phases keep the age structure of the competitive population
- GGA iterations keep the population size and collect tournament ranks
- Status files of GGA and the continuous phases
- Strategy factory and phase switching

Run with:
    python tests/test_strategies.py
"""

import math
import os
import sys
import tempfile

# Add src to PYTHONPATH
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from algotune.config import (
    CmaEsStrategyConfiguration,
    ContinuousOptimizationMethod,
    DifferentialEvolutionStrategyConfiguration,
    TunerConfiguration,
)
from algotune.errors import ConfigurationError, PreconditionViolation
from algotune.evaluation import (
    EvaluationCoordinator,
    GenomeTournamentRank,
    IncumbentGenomeWrapper,
    ResultStorage,
    RuntimeResult,
    SortByPenalizedRuntime,
)
from algotune.evaluation.sorting import SortResult
from algotune.genomes import Genome, GenomeBuilder, ImmutableGenome, Population
from algotune.parameters import AndNode, CategoricalDomain, ContinuousDomain, IntegerDomain, ParameterTree, ValueNode
from algotune.randomizer import Randomizer
from algotune.strategies import (
    ContinuizedGenomeSearchPoint,
    DifferentialEvolutionStrategy,
    GenomeAssistedSorter,
    GenomeSearchPoint,
    GenomeSearchPointConverter,
    GgaStatus,
    GgaStrategy,
    GlobalCovarianceMatrixAdaptationStrategy,
    GlobalDifferentialEvolutionInformationFlow,
    LocalCovarianceMatrixAdaptationStrategy,
    LocalDifferentialEvolutionInformationFlow,
    NoGeneticEngineering,
    PartialGenomeSearchPoint,
    StrategyFactory,
    find_strategy_index,
)

INSTANCES = [0, 1]


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


class Environment:
    """Tree, builder and coordinator shared by one strategy under test."""

    def __init__(self, **options):
        self.configuration = TunerConfiguration(
            population_size=16,
            max_mini_tournament_size=4,
            tournament_winner_percentage=0.5,
            max_genome_age=2,
            maximum_parallel_evaluations=2,
            random_seed=11,
            **options,
        )
        self.tree = build_tree()
        self.rng = Randomizer(self.configuration.random_seed)
        self.builder = GenomeBuilder(self.tree, self.configuration, self.rng)
        self.coordinator = EvaluationCoordinator(
            QuadraticSolver(),
            SortByPenalizedRuntime(1, 1000.0),
            self.configuration,
            ResultStorage(),
            self.rng.spawn(),
        )

    def population(self, competitive=6, non_competitive=4):
        return Population(
            self.configuration,
            competitive=[self.builder.create_random_genome(age=i % 3) for i in range(competitive)],
            non_competitive=[self.builder.create_random_genome(age=i % 3) for i in range(non_competitive)],
        )

    def close(self):
        self.coordinator.shutdown()


def competitive_ages(population):
    return sorted(genome.age for genome in population.get_competitive_individuals())


def run_phase(strategy, generation=0, limit=10):
    """Iterate a started phase until it terminates, at least once."""
    strategy.perform_iteration(generation, INSTANCES)
    generation += 1
    while not strategy.has_terminated() and generation < limit:
        strategy.perform_iteration(generation, INSTANCES)
        generation += 1
    return generation


def test_assign_ranks_with_duplicates():
    """Test that equal genomes take consecutive ranks in input order."""
    a = ImmutableGenome(Genome({"x": 1.0}))
    b = ImmutableGenome(Genome({"x": 2.0}))
    c = ImmutableGenome(Genome({"x": 3.0}))

    ranks = GenomeAssistedSorter.assign_ranks_to_genomes(SortResult([a, b, a, c]), [a, c, a, b])
    assert ranks == [0, 3, 2, 1], f"Got {ranks}"

    try:
        GenomeAssistedSorter.assign_ranks_to_genomes(SortResult([a]), [b])
        assert False, "Genomes missing from the sort result should be rejected"
    except PreconditionViolation:
        pass

    print("PASS: Sort results are turned into ranks")


def test_converter_selects_continuous_parameters():
    """Test which parameters the converter treats as continuous."""
    tree = ParameterTree(AndNode([
        ValueNode("iterations", IntegerDomain(0, 1000)),
        ValueNode("threads", IntegerDomain(1, 8)),
        ValueNode("alpha", ContinuousDomain(0.0, 1.0)),
        ValueNode("mode", CategoricalDomain(["a", "b"])),
    ]))
    converter = GenomeSearchPointConverter(tree, minimum_domain_size=150)

    assert [node.identifier for node in converter.continuous_parameters] == ["alpha", "iterations"]
    assert converter.dimension == 2

    base = ImmutableGenome(Genome({"iterations": 10, "threads": 4, "alpha": 0.5, "mode": "b"}))
    assert converter.transform_genome_into_values(base).tolist() == [0.5, 10.0]

    merged = converter.merge_into_genome([0.25, 99.6], base)
    assert merged.get_gene_value("alpha") == 0.25
    assert merged.get_gene_value("iterations") == 100
    assert merged.get_gene_value("threads") == 4 and merged.get_gene_value("mode") == "b"

    try:
        converter.merge_into_genome([0.25], base)
        assert False, "Wrong number of values should be rejected"
    except ValueError as e:
        assert "alpha" in str(e)

    print("PASS: Converter moves continuous parameters only")


def test_search_points_round_trip():
    """Test that search points created from a genome decode to that genome."""
    environment = Environment()
    try:
        tree = environment.tree
        builder = environment.builder
        genome = Genome({"x": 1.5, "y": -2.0, "mode": "b"})

        continuized = ContinuizedGenomeSearchPoint.create_from_genome(genome, tree)
        assert continuized.genome == genome and not continuized.is_repaired
        lower, upper = ContinuizedGenomeSearchPoint.obtain_parameter_bounds(tree)
        assert lower.tolist() == [0.0, -5.0, -5.0] and upper.tolist() == [1.0, 5.0, 5.0]
        decoded = ContinuizedGenomeSearchPoint(continuized.values, tree, builder, lower, upper).genome
        assert decoded.get_gene_value("mode") == "b"
        assert math.isclose(decoded.get_gene_value("x"), 1.5, abs_tol=1e-9)
        assert math.isclose(decoded.get_gene_value("y"), -2.0, abs_tol=1e-9)

        partial = PartialGenomeSearchPoint.create_from_genome(genome, tree, 150)
        assert partial.values.shape[0] == 2
        restored = PartialGenomeSearchPoint.from_dict(partial.to_dict(), tree, 150)
        assert restored.genome == genome

        point = GenomeSearchPoint.create_from_genome(genome, tree, 150, builder)
        assert point.genome == genome and point.is_valid()
        outside = GenomeSearchPoint([7.0, 0.0], point, builder)
        assert not outside.is_valid(), "Values outside the domain make the genome invalid"
    finally:
        environment.close()

    print("PASS: Search points round trip through genomes")


def test_global_jade_needs_three_genomes():
    """Test the minimum competitive population of global JADE."""
    environment = Environment()
    try:
        flow = GlobalDifferentialEvolutionInformationFlow(
            environment.configuration.differential_evolution, environment.tree, environment.builder
        )
        try:
            flow.determine_initial_points(environment.population(competitive=2), None)
            assert False, "Two competitive genomes are too few for JADE"
        except ConfigurationError:
            pass

        population = environment.population(competitive=3)
        points = flow.determine_initial_points(population, None)
        assert [point.genome for point in points] == list(population.get_competitive_individuals())
    finally:
        environment.close()

    print("PASS: Global JADE checks the population size")


def test_local_jade_points_around_incumbent():
    """Test that local JADE starts on half the competitive count and keeps the incumbent."""
    environment = Environment()
    try:
        flow = LocalDifferentialEvolutionInformationFlow(
            environment.configuration.differential_evolution, environment.tree, environment.builder
        )
        population = environment.population(competitive=6)
        incumbent = population.get_competitive_individuals()[0]

        try:
            flow.determine_initial_points(population, None)
            assert False, "Local JADE needs an incumbent"
        except PreconditionViolation:
            pass

        points = flow.determine_initial_points(population, incumbent)
        assert len(points) == 3
        assert points[-1].genome == incumbent
        for point in points:
            assert point.is_valid()
            assert point.genome.get_gene_value("mode") == incumbent.get_gene_value("mode")

        try:
            flow.determine_initial_points(environment.population(competitive=5), incumbent)
            assert False, "Five competitive genomes are too few for local JADE"
        except ConfigurationError:
            pass
    finally:
        environment.close()

    print("PASS: Local JADE starts around the incumbent")


def test_global_cma_phase_keeps_ages():
    """Test a global CMA-ES phase end to end."""
    environment = Environment(
        continuous_optimization_method=ContinuousOptimizationMethod.CMA_ES,
        cma_es=CmaEsStrategyConfiguration(maximum_number_generations=3, initial_step_size=1.0),
    )
    try:
        population = environment.population()
        incumbent_genome = population.get_competitive_individuals()[2]
        incumbent = IncumbentGenomeWrapper(ImmutableGenome(incumbent_genome), 0)

        strategy = GlobalCovarianceMatrixAdaptationStrategy(
            environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
        )
        strategy.initialize(population, incumbent, INSTANCES)
        run_phase(strategy)

        best = strategy.find_incumbent_genome()
        assert set(best.results) == set(INSTANCES), "Incumbent results come from the storage"

        updated = strategy.finish_phase(population)
        assert updated.competitive_count == population.competitive_count
        assert competitive_ages(updated) == competitive_ages(population)
        assert incumbent_genome in updated.get_competitive_individuals()
        assert updated.get_non_competitive_mates() == population.get_non_competitive_mates()
        for genome in updated.get_competitive_individuals():
            assert environment.builder.is_genome_valid(genome)
    finally:
        environment.close()

    print("PASS: Global CMA-ES phase keeps the age structure")


def test_local_cma_phase_keeps_incumbent():
    """Test a local CMA-ES phase with a replacement rate."""
    environment = Environment(
        continuous_optimization_method=ContinuousOptimizationMethod.CMA_ES,
        cma_es=CmaEsStrategyConfiguration(
            focus_on_incumbent=True, replacement_rate=0.5, maximum_number_generations=2, initial_step_size=1.0
        ),
    )
    try:
        population = environment.population()
        incumbent_genome = population.get_competitive_individuals()[0]
        strategy = LocalCovarianceMatrixAdaptationStrategy(
            environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
        )

        try:
            strategy.initialize(population, None, INSTANCES)
            assert False, "Local CMA-ES needs an incumbent"
        except PreconditionViolation:
            pass

        strategy.initialize(population, IncumbentGenomeWrapper(ImmutableGenome(incumbent_genome), 0), INSTANCES)
        run_phase(strategy)
        for point in strategy.most_recent_sorting:
            assert point.genome.get_gene_value("mode") == incumbent_genome.get_gene_value("mode")

        updated = strategy.finish_phase(population)
        assert updated.competitive_count == population.competitive_count
        assert competitive_ages(updated) == competitive_ages(population)
        assert incumbent_genome in updated.get_competitive_individuals()
    finally:
        environment.close()

    print("PASS: Local CMA-ES phase keeps the incumbent")


def test_global_jade_phase_keeps_ages():
    """Test that a global JADE phase hands back the age structure of the competitive population."""
    environment = Environment(
        continuous_optimization_method=ContinuousOptimizationMethod.JADE,
        differential_evolution=DifferentialEvolutionStrategyConfiguration(maximum_number_generations=2),
    )
    try:
        population = environment.population()
        assert competitive_ages(population) == [0, 0, 1, 1, 2, 2]
        incumbent = IncumbentGenomeWrapper(ImmutableGenome(population.get_competitive_individuals()[2]), 0)

        strategy = DifferentialEvolutionStrategy(
            environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
        )
        strategy.initialize(population, incumbent, INSTANCES)
        run_phase(strategy)
        best = strategy.find_incumbent_genome()

        updated = strategy.finish_phase(population)
        assert updated.competitive_count == population.competitive_count
        assert competitive_ages(updated) == competitive_ages(population)
        assert best.create_mutable_genome() in updated.get_competitive_individuals()
        assert updated.get_non_competitive_mates() == population.get_non_competitive_mates()
        assert [g.age for g in updated.get_non_competitive_mates()] == [g.age for g in population.get_non_competitive_mates()]
    finally:
        environment.close()

    print("PASS: Global JADE phase keeps the age structure")


def test_cma_phases_with_incumbent_outside_population():
    """Test that an incumbent missing from the competitive population does not change the ages."""
    for focus_on_incumbent in (False, True):
        environment = Environment(
            continuous_optimization_method=ContinuousOptimizationMethod.CMA_ES,
            cma_es=CmaEsStrategyConfiguration(
                focus_on_incumbent=focus_on_incumbent,
                replacement_rate=0.5,
                maximum_number_generations=1,
                initial_step_size=1.0,
            ),
        )
        try:
            population = Population(
                environment.configuration,
                competitive=[environment.builder.create_random_genome(age=1 + i % 2) for i in range(6)],
                non_competitive=[environment.builder.create_random_genome(age=0) for _ in range(4)],
            )
            outsider = Genome({"x": 0.5, "y": -0.5, "mode": "a"}, age=2)
            assert outsider not in population.get_competitive_individuals()

            strategy_type = LocalCovarianceMatrixAdaptationStrategy if focus_on_incumbent else GlobalCovarianceMatrixAdaptationStrategy
            strategy = strategy_type(
                environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
            )
            strategy.initialize(population, IncumbentGenomeWrapper(ImmutableGenome(outsider), 0), INSTANCES)
            run_phase(strategy)

            updated = strategy.finish_phase(population)
            assert competitive_ages(updated) == [1, 1, 1, 2, 2, 2], f"Got {competitive_ages(updated)}"
            assert outsider in updated.get_competitive_individuals()
        finally:
            environment.close()

    print("PASS: CMA-ES phases keep the ages with an outside incumbent")


def test_jade_phase_and_status_dump():
    """Test a global JADE phase, its status files and the switch back to GGA."""
    with tempfile.TemporaryDirectory() as tmpdir:
        environment = Environment(
            continuous_optimization_method=ContinuousOptimizationMethod.JADE,
            differential_evolution=DifferentialEvolutionStrategyConfiguration(maximum_number_generations=2),
            status_directory=tmpdir,
        )
        try:
            population = environment.population()
            strategies = StrategyFactory.create(
                environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
            )
            strategy = strategies[1]
            assert isinstance(strategy, DifferentialEvolutionStrategy)

            strategy.initialize(population, None, INSTANCES)
            strategy.perform_iteration(0, INSTANCES)
            strategy.dump_status()
            assert os.path.exists(os.path.join(tmpdir, DifferentialEvolutionStrategy.STATUS_FILE_NAME))

            restored = DifferentialEvolutionStrategy(
                environment.configuration, environment.tree, environment.builder, environment.coordinator, environment.rng
            )
            restored.use_status_dump(NoGeneticEngineering())
            assert [p.genome for p in restored.most_recent_sorting] == [p.genome for p in strategy.most_recent_sorting]
            assert restored.optimizer.current_generation == 1
            assert restored.current_evaluation_instances == INSTANCES

            strategy.perform_iteration(1, INSTANCES)
            assert strategy.has_terminated()

            updated = strategy.finish_phase(population)
            assert updated.competitive_count == population.competitive_count
            assert strategy.next_strategy(strategies) == 0
        finally:
            environment.close()

    print("PASS: JADE phase runs, dumps its status and hands back to GGA")


def test_gga_iterations_keep_population_size():
    """Test GGA population updates, rank bookkeeping and termination."""
    environment = Environment(max_gga_generations=2)
    try:
        population = environment.population(competitive=8, non_competitive=8)
        gga = GgaStrategy(
            environment.configuration,
            environment.tree,
            environment.builder,
            environment.coordinator,
            NoGeneticEngineering(),
            environment.rng,
        )
        gga.initialize(population, None, INSTANCES)

        gga.perform_iteration(0, INSTANCES)
        assert not gga.has_terminated()
        assert sum(len(ranks) for ranks in gga.all_known_ranks.values()) == 8
        gga.perform_iteration(1, INSTANCES)
        assert gga.has_terminated()

        updated = gga.finish_phase(population)
        assert updated.competitive_count == 8 and updated.non_competitive_count == 8
        # only the incumbent may outlive the maximum age
        assert all(genome.age <= 2 for genome in updated.get_non_competitive_mates())
        assert gga.find_incumbent_genome().genome in updated.get_competitive_individuals()
        assert gga.next_strategy([gga]) == 0
    finally:
        environment.close()

    print("PASS: GGA keeps the population size")


def test_gga_status_round_trip():
    """Test GGA status files and their counter checks."""
    configuration = TunerConfiguration(population_size=8)
    population = Population(configuration, competitive=[Genome({"x": 1}, age=1)], non_competitive=[Genome({"x": 2})])
    genome = ImmutableGenome(Genome({"x": 1}))
    ranks = {genome: [GenomeTournamentRank(1, 0, 0), GenomeTournamentRank(2, 3, 1)]}

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, GgaStatus.FILE_NAME)
        GgaStatus(population, 4, 2, ranks).save(path, note="test")
        status, metadata = GgaStatus.load(path)

    assert metadata["note"] == "test"
    assert status.iteration_counter == 4 and status.incumbent_kept_counter == 2
    assert status.all_known_ranks == ranks
    assert status.population.get_competitive_individuals() == population.get_competitive_individuals()

    try:
        GgaStatus(population, 1, 2, ranks)
        assert False, "Kept counter above the iteration counter should be rejected"
    except ValueError:
        pass

    print("PASS: GGA status round trip")


def test_strategy_factory():
    """Test strategy creation and validation."""
    environment = Environment()
    try:
        arguments = (environment.tree, environment.builder, environment.coordinator, environment.rng)

        strategies = StrategyFactory.create(environment.configuration, *arguments)
        assert [type(s) for s in strategies] == [GgaStrategy]

        local_cma = TunerConfiguration(
            population_size=16,
            continuous_optimization_method=ContinuousOptimizationMethod.CMA_ES,
            cma_es=CmaEsStrategyConfiguration(focus_on_incumbent=True),
        )
        strategies = StrategyFactory.create(local_cma, *arguments)
        assert [type(s) for s in strategies] == [GgaStrategy, LocalCovarianceMatrixAdaptationStrategy]
        assert strategies[0].next_strategy(strategies) == 1
        assert find_strategy_index(strategies, LocalCovarianceMatrixAdaptationStrategy) == 1

        try:
            find_strategy_index(strategies, DifferentialEvolutionStrategy)
            assert False, "Missing strategy types should be reported"
        except ConfigurationError:
            pass

        try:
            StrategyFactory.validate(TunerConfiguration(population_size=16, train_model=True), None)
            assert False, "Model training without a model should be rejected"
        except ConfigurationError:
            pass

        try:
            strategies[0].dump_status()
            assert False, "Status files need a status directory"
        except ConfigurationError:
            pass
    finally:
        environment.close()

    print("PASS: Strategy factory creates and validates strategies")


def run_all_tests():
    """Run all strategy tests."""
    print("\n" + "=" * 60)
    print("  Strategy Unit Tests")
    print("=" * 60 + "\n")

    tests = [
        test_assign_ranks_with_duplicates,
        test_converter_selects_continuous_parameters,
        test_search_points_round_trip,
        test_global_jade_needs_three_genomes,
        test_local_jade_points_around_incumbent,
        test_global_cma_phase_keeps_ages,
        test_local_cma_phase_keeps_incumbent,
        test_global_jade_phase_keeps_ages,
        test_cma_phases_with_incumbent_outside_population,
        test_jade_phase_and_status_dump,
        test_gga_iterations_keep_population_size,
        test_gga_status_round_trip,
        test_strategy_factory,
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
