"""
JADE phase.

JADE optimizes the continuous parameters of the competitive genomes; all
other genes stay as they are. Two information flows decide where JADE
starts and how its result re-enters the population:

- Global: every competitive genome is a JADE individual, and the sorted
  JADE population becomes the new competitive population.
- Local: JADE runs on random points around the incumbent (half the
  competitive population size). Afterwards either the incumbent is replaced
  by the best point, or a share of the competitive population is replaced
  by the best points.

The adapted mean mutation factor and crossover rate carry over from one JADE
phase to the next; everything else restarts.
"""

import math
from dataclasses import replace
from typing import Any, Optional, Protocol, Sequence

from algotune.config import DifferentialEvolutionStrategyConfiguration, TunerConfiguration
from algotune.errors import ConfigurationError, PreconditionViolation, RepairExhaustedError
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome
from algotune.genomes.population import Population
from algotune.logger import TunerLogger
from algotune.optimization.differential_evolution import DifferentialEvolution, DifferentialEvolutionStatus
from algotune.parameters.tree import ParameterTree
from algotune.randomizer import Randomizer
from algotune.strategies.continuous import ContinuousOptimizationStrategyBase, GenomeSearchPointSorter
from algotune.strategies.search_points import GenomeSearchPoint

# JADE needs a target plus three distinct other individuals in the worst case
MINIMUM_JADE_POPULATION = 3
RANDOM_POINT_TRIALS = 50


# =============================================================================
# Information flows
# =============================================================================

class InformationFlowStrategy(Protocol):
	"""Where JADE starts and how its result becomes a competitive population."""

	def determine_initial_points(self, base_population: Population, incumbent: Optional[Genome]) -> list[GenomeSearchPoint]:
		...

	def define_competitive_population(
		self,
		original_competitives: Sequence[Genome],
		original_incumbent: Optional[Genome],
		most_recent_sorting: Sequence[GenomeSearchPoint],
	) -> list[Genome]:
		...


class GlobalDifferentialEvolutionInformationFlow:
	"""The competitive population is the JADE population."""

	def __init__(self, strategy_configuration: DifferentialEvolutionStrategyConfiguration, tree: ParameterTree, builder: GenomeBuilder):
		self._strategy_configuration = strategy_configuration
		self._tree = tree
		self._builder = builder

	def determine_initial_points(self, base_population: Population, incumbent: Optional[Genome]) -> list[GenomeSearchPoint]:
		if base_population.competitive_count < MINIMUM_JADE_POPULATION:
			raise ConfigurationError(
				f"JADE needs at least {MINIMUM_JADE_POPULATION} individuals to work, "
				f"but the competitive population only has {base_population.competitive_count}."
			)
		return [
			GenomeSearchPoint.create_from_genome(
				genome, self._tree, self._strategy_configuration.minimum_domain_size, self._builder
			)
			for genome in base_population.get_competitive_individuals()
		]

	def define_competitive_population(
		self,
		original_competitives: Sequence[Genome],
		original_incumbent: Optional[Genome],
		most_recent_sorting: Sequence[GenomeSearchPoint],
	) -> list[Genome]:
		# sorted points carry genes only, so they take over the ages of the competitive population
		ages = self._builder.rng.shuffle([genome.age for genome in original_competitives])
		return [point.genome.create_mutable_genome(age) for age, point in zip(ages, most_recent_sorting)]


class LocalDifferentialEvolutionInformationFlow:
	"""JADE around the incumbent."""

	def __init__(
		self,
		strategy_configuration: DifferentialEvolutionStrategyConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		logger: Optional[TunerLogger] = None,
	):
		self._strategy_configuration = strategy_configuration
		self._tree = tree
		self._builder = builder
		self._log = logger or TunerLogger("LocalDifferentialEvolutionInformationFlow")

	def determine_initial_points(self, base_population: Population, incumbent: Optional[Genome]) -> list[GenomeSearchPoint]:
		# half the competitive count keeps the number of evaluations equal to GGA (JADE evaluates targets and trials)
		jade_population_count = base_population.competitive_count // 2
		if jade_population_count < MINIMUM_JADE_POPULATION:
			raise ConfigurationError(
				f"JADE needs at least {MINIMUM_JADE_POPULATION} individuals to work. To ensure this, the competitive "
				f"population needs at least {2 * MINIMUM_JADE_POPULATION} individuals, "
				f"but only has {base_population.competitive_count}."
			)
		if incumbent is None:
			raise PreconditionViolation("Cannot use incumbent improving strategy without an incumbent.")

		points = [self._create_valid_point_around(incumbent) for _ in range(jade_population_count - 1)]
		# the incumbent itself stays in the population, so the phase is elitist
		points.append(self._create_point(incumbent))
		return points

	def define_competitive_population(
		self,
		original_competitives: Sequence[Genome],
		original_incumbent: Optional[Genome],
		most_recent_sorting: Sequence[GenomeSearchPoint],
	) -> list[Genome]:
		if self._strategy_configuration.replacement_rate == 0:
			return self._replace_incumbent_with_best_point(original_competitives, original_incumbent, most_recent_sorting[0])
		return self._replace_some_genomes_with_best_points(original_competitives, most_recent_sorting)

	def _create_point(self, genome: Genome) -> GenomeSearchPoint:
		return GenomeSearchPoint.create_from_genome(
			genome, self._tree, self._strategy_configuration.minimum_domain_size, self._builder
		)

	def _create_valid_point_around(self, genome: Genome) -> GenomeSearchPoint:
		"""
		Random valid point with the discrete genes of `genome`.

		Raises:
			RepairExhaustedError: If neither random trials nor a repair yield a valid point
		"""
		for _ in range(RANDOM_POINT_TRIALS):
			point = GenomeSearchPoint.base_random_point_on_genome(
				genome, self._tree, self._strategy_configuration.minimum_domain_size, self._builder
			)
			if point.is_valid():
				return point

		self._log.warning(
			f"Did not find a valid point after {RANDOM_POINT_TRIALS} trials, now using a repair operation on {point}. "
			"If that changes discrete parameters, JADE performance may suffer."
		)
		repaired = point.genome.create_mutable_genome()
		self._builder.make_genome_valid(repaired)
		point = self._create_point(repaired)
		if point.is_valid():
			return point
		raise RepairExhaustedError(
			f"Could not find a valid point after {RANDOM_POINT_TRIALS} trials and a repair operation. "
			f"Consider modifying your genome builder.\nCurrent invalid point: {point}."
		)

	def _replace_some_genomes_with_best_points(
		self,
		original_competitives: Sequence[Genome],
		most_recent_sorting: Sequence[GenomeSearchPoint],
	) -> list[Genome]:
		# at least one genome is replaced, but never more than JADE produced
		number_to_replace = min(
			math.ceil(self._strategy_configuration.replacement_rate * len(original_competitives)),
			len(most_recent_sorting),
		)
		number_to_keep = len(original_competitives) - number_to_replace

		shuffled = self._builder.rng.shuffle(original_competitives)
		competitives = [Genome.copy_of(genome) for genome in shuffled[:number_to_keep]]
		# replacements inherit the ages of the genomes they replace
		for i in range(number_to_replace):
			age = shuffled[number_to_keep + i].age
			competitives.append(most_recent_sorting[i].genome.create_mutable_genome(age))
		return competitives

	@staticmethod
	def _replace_incumbent_with_best_point(
		original_competitives: Sequence[Genome],
		original_incumbent: Optional[Genome],
		best_point: GenomeSearchPoint,
	) -> list[Genome]:
		if original_incumbent is None:
			raise PreconditionViolation("Cannot use incumbent improving strategy without an incumbent.")
		replaced_index = next(
			(
				index for index, genome in enumerate(original_competitives)
				if genome.is_engineered == original_incumbent.is_engineered
				and genome.age == original_incumbent.age
				and genome == original_incumbent
			),
			None,
		)
		if replaced_index is None:
			raise PreconditionViolation(f"The incumbent {original_incumbent} is not part of the competitive population.")

		competitives = [
			Genome.copy_of(genome) for index, genome in enumerate(original_competitives) if index != replaced_index
		]
		competitives.append(best_point.genome.create_mutable_genome(original_competitives[replaced_index].age))
		return competitives


# =============================================================================
# Strategy
# =============================================================================

class DifferentialEvolutionStrategy(ContinuousOptimizationStrategyBase):
	"""
	JADE phase over the continuous parameters.

	Args:
		configuration: Tuner configuration; `differential_evolution` holds the phase options
		tree: Parameter tree
		builder: Genome builder (validity checks and repair)
		coordinator: Evaluation coordinator
		rng: Random number handle
		logger: Component logger
	"""

	STATUS_FILE_NAME = "status.de_strategy.json"

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		strategy_configuration = configuration.differential_evolution
		super().__init__(
			configuration,
			tree,
			builder,
			coordinator,
			GenomeSearchPointSorter(coordinator),
			strategy_configuration,
			rng,
			logger,
		)
		if strategy_configuration.focus_on_incumbent:
			self._information_flow: InformationFlowStrategy = LocalDifferentialEvolutionInformationFlow(
				strategy_configuration, tree, builder
			)
		else:
			self._information_flow = GlobalDifferentialEvolutionInformationFlow(strategy_configuration, tree, builder)
		jade = strategy_configuration.differential_evolution
		self._runner = self._create_runner(jade.initial_mean_mutation_factor, jade.initial_mean_crossover_rate)

	@property
	def optimizer(self) -> DifferentialEvolution:
		return self._runner

	@property
	def optimizer_status_file_name(self) -> str:
		return DifferentialEvolutionStatus.FILE_NAME

	def initialize_continuous_optimizer(self, base_population: Population, incumbent: Optional[IncumbentGenomeWrapper]) -> None:
		if not base_population.get_competitive_individuals():
			raise PreconditionViolation("Population must have competitive individuals.")
		# keep the parameter adaptation of earlier phases, otherwise short phases never see it
		self._runner = self._create_runner(self._runner.mean_mutation_factor, self._runner.mean_crossover_rate)
		initial_points = self._information_flow.determine_initial_points(base_population, self.original_incumbent)
		self._runner.initialize(initial_points, self.strategy_configuration.maximum_number_generations)
		self._log.debug(f"Tuning {initial_points[0].values.shape[0]} continuous parameters.")

	def define_competitive_population(self, original_competitives: Sequence[Genome]) -> list[Genome]:
		return self._information_flow.define_competitive_population(
			original_competitives,
			self.original_incumbent,
			self.most_recent_sorting,
		)

	def restore_search_point(self, data: dict[str, Any]) -> GenomeSearchPoint:
		return GenomeSearchPoint.from_dict(data, self.tree, self.strategy_configuration.minimum_domain_size, self.builder)

	def _create_search_point(self, values, parent: GenomeSearchPoint) -> GenomeSearchPoint:
		return GenomeSearchPoint(values, parent, self.builder)

	def _create_runner(self, mean_mutation_factor: float, mean_crossover_rate: float) -> DifferentialEvolution:
		configuration = replace(
			self.strategy_configuration.differential_evolution,
			initial_mean_mutation_factor=mean_mutation_factor,
			initial_mean_crossover_rate=mean_crossover_rate,
		)
		return DifferentialEvolution(
			self.sorter,
			self._create_search_point,
			configuration,
			self.rng,
			point_restorer=self.restore_search_point,
			logger=TunerLogger("DifferentialEvolution"),
		)
