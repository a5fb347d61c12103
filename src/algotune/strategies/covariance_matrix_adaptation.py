"""
CMA-ES phases.

Global: CMA-ES over all parameters of the competitive population. The
search distribution starts at the incumbent (or the mean of the competitive
genomes) and the best points replace the competitive population.

Local: CMA-ES over the continuous parameters of the incumbent only. The
best points replace a share of the competitive population; the incumbent is
always kept.

Both preserve the age histogram of the competitive population.

Usage:
	strategy = create_covariance_matrix_adaptation_strategy(config, tree, builder, coordinator, rng)
	strategy.initialize(population, incumbent, instances)
"""

import math
from typing import Any, Optional, Sequence

import torch

from algotune.config import TunerConfiguration
from algotune.errors import PreconditionViolation
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.population import Population
from algotune.logger import TunerLogger
from algotune.optimization.cmaes import CmaEs, CmaEsConfiguration, CmaEsStatus
from algotune.optimization.termination import (
	ConditionCov,
	MaxIterations,
	NoEffectAxis,
	NoEffectCoord,
	TerminationCriterion,
	TolUpSigma,
)
from algotune.parameters.tree import ParameterTree
from algotune.randomizer import Randomizer
from algotune.strategies.continuous import ContinuousOptimizationStrategyBase, RepairedGenomeSearchPointSorter
from algotune.strategies.search_points import (
	ContinuizedGenomeSearchPoint,
	GenomeSearchPointConverter,
	PartialGenomeSearchPoint,
)


class CovarianceMatrixAdaptationStrategyBase(ContinuousOptimizationStrategyBase):
	"""CMA-ES phase; subclasses decide the search space and the information flow."""

	STATUS_FILE_NAME = "status.cma_strategy.json"

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		super().__init__(
			configuration,
			tree,
			builder,
			coordinator,
			RepairedGenomeSearchPointSorter(coordinator),
			configuration.cma_es,
			rng,
			logger,
		)
		self._cma_es: Optional[CmaEs] = None

	@property
	def optimizer(self) -> CmaEs:
		if self._cma_es is None:
			raise RuntimeError("The CMA-ES phase has not been initialized.")
		return self._cma_es

	@property
	def optimizer_status_file_name(self) -> str:
		return CmaEsStatus.FILE_NAME

	def create_termination_criteria(self) -> list[TerminationCriterion]:
		return [
			ConditionCov(),
			NoEffectAxis(),
			NoEffectCoord(),
			TolUpSigma(),
			MaxIterations(self.strategy_configuration.maximum_number_generations),
		]

	def _create_cma_es(self, search_point_factory) -> CmaEs:
		return CmaEs(self.sorter, search_point_factory, self.rng, TunerLogger("CmaEs"))


class GlobalCovarianceMatrixAdaptationStrategy(CovarianceMatrixAdaptationStrategyBase):
	"""CMA-ES over every parameter, categorical ones encoded by value index."""

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		super().__init__(configuration, tree, builder, coordinator, rng, logger)
		self._lower_bounds, self._upper_bounds = ContinuizedGenomeSearchPoint.obtain_parameter_bounds(tree)
		self._cma_es = self._create_cma_es(self._create_search_point)

	def _create_search_point(self, values) -> ContinuizedGenomeSearchPoint:
		return ContinuizedGenomeSearchPoint(values, self.tree, self.builder, self._lower_bounds, self._upper_bounds)

	def initialize_continuous_optimizer(self, base_population: Population, incumbent: Optional[IncumbentGenomeWrapper]) -> None:
		if incumbent is not None:
			initial_mean = ContinuizedGenomeSearchPoint.create_from_genome(incumbent.create_mutable_genome(), self.tree).values
		else:
			initial_mean = self._compute_mean_of_competitive_population(base_population)
		configuration = CmaEsConfiguration(
			base_population.competitive_count,
			initial_mean,
			self.strategy_configuration.initial_step_size,
		)
		# a phase never reuses the distribution of an earlier phase
		self._cma_es = self._create_cma_es(self._create_search_point)
		self._cma_es.initialize(configuration, self.create_termination_criteria())

	def define_competitive_population(self, original_competitives: Sequence[Genome]) -> list[Genome]:
		competitives: list[Genome] = []
		ages = [genome.age for genome in original_competitives]
		if self.original_incumbent is not None:
			competitives.append(self._copy_incumbent_with_age_of(ages))

		missing_points = self.most_recent_sorting[:len(self.most_recent_sorting) - len(competitives)]
		for age, point in zip(ages, self.rng.shuffle(missing_points)):
			competitives.append(point.genome.create_mutable_genome(age))
		return competitives

	def restore_search_point(self, data: dict[str, Any]) -> ContinuizedGenomeSearchPoint:
		return ContinuizedGenomeSearchPoint.from_dict(data, self.tree)

	def _compute_mean_of_competitive_population(self, population: Population) -> torch.Tensor:
		competitives = population.get_competitive_individuals()
		if not competitives:
			raise PreconditionViolation("Population must contain competitive individuals.")
		points = [ContinuizedGenomeSearchPoint.create_from_genome(genome, self.tree).values for genome in competitives]
		return torch.stack(points).mean(dim=0)


class LocalCovarianceMatrixAdaptationStrategy(CovarianceMatrixAdaptationStrategyBase):
	"""CMA-ES over the continuous parameters of the incumbent."""

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		super().__init__(configuration, tree, builder, coordinator, rng, logger)
		minimum_domain_size = self.strategy_configuration.minimum_domain_size
		self._converter = GenomeSearchPointConverter(tree, minimum_domain_size)
		self._lower_bounds, self._upper_bounds = PartialGenomeSearchPoint.obtain_parameter_bounds(tree, minimum_domain_size)
		# placeholder runner until a phase provides the incumbent
		self._cma_es = self._create_cma_es(self._missing_incumbent_factory)

	@staticmethod
	def _missing_incumbent_factory(values) -> PartialGenomeSearchPoint:
		raise RuntimeError("Called the search point factory of local CMA-ES before initialization.")

	def initialize_continuous_optimizer(self, base_population: Population, incumbent: Optional[IncumbentGenomeWrapper]) -> None:
		if incumbent is None:
			self._log.warning(
				"CMA-ES with focus on incumbent can only be executed if an incumbent exists, "
				"i.e. it is not possible to run it on its own."
			)
			raise PreconditionViolation("Local CMA-ES needs an incumbent.")
		incumbent_genome = incumbent.create_mutable_genome()
		initial_mean = PartialGenomeSearchPoint.create_from_genome(
			incumbent_genome,
			self.tree,
			self.strategy_configuration.minimum_domain_size,
		).values
		configuration = CmaEsConfiguration(
			base_population.competitive_count,
			initial_mean,
			self.strategy_configuration.initial_step_size,
		)
		self._cma_es = self._create_runner(incumbent_genome)
		self._cma_es.initialize(configuration, self.create_termination_criteria())

	def define_competitive_population(self, original_competitives: Sequence[Genome]) -> list[Genome]:
		count = len(original_competitives)
		# replace at least one genome, keep at least one for the incumbent
		number_to_replace = min(math.ceil(self.strategy_configuration.replacement_rate * count), count - 1)
		number_to_keep = count - number_to_replace - 1

		shuffled = self.rng.shuffle(original_competitives)
		competitives = [Genome.copy_of(genome) for genome in shuffled[:number_to_keep]]
		ages = self.rng.shuffle([genome.age for genome in original_competitives])
		for genome in competitives:
			self._remove_age(ages, genome.age)

		if self.original_incumbent not in competitives:
			competitives.append(self._copy_incumbent_with_age_of(ages))
		else:
			competitives.append(Genome.copy_of(shuffled[number_to_keep]))
			self._remove_age(ages, shuffled[number_to_keep].age)
		for i in range(number_to_replace):
			competitives.append(self.most_recent_sorting[i].genome.create_mutable_genome(ages[i]))
		return competitives

	def use_status_dump(self, genetic_engineering) -> None:
		# the runner depends on the incumbent of the dumped phase
		status = self.read_strategy_status()
		if status.original_incumbent is not None:
			self._cma_es = self._create_runner(status.original_incumbent)
		super().use_status_dump(genetic_engineering)

	def restore_search_point(self, data: dict[str, Any]) -> PartialGenomeSearchPoint:
		return PartialGenomeSearchPoint.from_dict(data, self.tree, self.strategy_configuration.minimum_domain_size)

	def _create_runner(self, evaluation_base: Genome) -> CmaEs:
		base = ImmutableGenome(evaluation_base)
		return self._create_cma_es(
			lambda values: PartialGenomeSearchPoint(
				base, values, self._converter, self.builder, self._lower_bounds, self._upper_bounds
			)
		)


def create_covariance_matrix_adaptation_strategy(
	configuration: TunerConfiguration,
	tree: ParameterTree,
	builder: GenomeBuilder,
	coordinator: EvaluationCoordinator,
	rng: Randomizer,
	logger: Optional[TunerLogger] = None,
) -> CovarianceMatrixAdaptationStrategyBase:
	"""Local strategy when the CMA-ES options focus on the incumbent, global otherwise."""
	if configuration.cma_es.focus_on_incumbent:
		return LocalCovarianceMatrixAdaptationStrategy(configuration, tree, builder, coordinator, rng, logger)
	return GlobalCovarianceMatrixAdaptationStrategy(configuration, tree, builder, coordinator, rng, logger)


def covariance_matrix_adaptation_strategy_type(configuration: TunerConfiguration) -> type:
	if configuration.cma_es.focus_on_incumbent:
		return LocalCovarianceMatrixAdaptationStrategy
	return GlobalCovarianceMatrixAdaptationStrategy
