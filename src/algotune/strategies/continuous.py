"""
Common ground of the continuous phases (CMA-ES and JADE).

A continuous phase takes the competitive part of the population, optimizes
it with an evolution-based continuous optimizer whose points are evaluated
through the coordinator's full sort, and finally writes the best points back
into the competitive population. The non-competitive part is left alone.

Sorters:
	GenomeAssistedSorter: turns a coordinator sort result into ranks
	RepairedGenomeSearchPointSorter: repaired points behind all others
	GenomeSearchPointSorter: ranks only
"""

from abc import abstractmethod
from typing import Any, Optional, Sequence

from algotune.config import StrategyConfiguration, TunerConfiguration
from algotune.errors import PreconditionViolation
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.evaluation.sorting import SortResult
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.population import Population
from algotune.logger import TunerLogger
from algotune.optimization.search_point import SearchPoint, SearchPointSorter
from algotune.parameters.tree import ParameterTree
from algotune.randomizer import Randomizer
from algotune.serialization import Serializable, instances_from_list, instances_to_list
from algotune.strategies.base import PopulationUpdateStrategy, find_strategy_index


# =============================================================================
# Sorters
# =============================================================================

class GenomeAssistedSorter(SearchPointSorter):
	"""
	Sorts search points by evaluating their genomes on the current instances.

	Args:
		coordinator: Evaluates and sorts genome lists
	"""

	def __init__(self, coordinator: EvaluationCoordinator):
		self._coordinator = coordinator
		self._instances: list[Instance] = []

	def update_instances(self, instances: Sequence[Instance]) -> None:
		self._instances = list(instances)

	def sort_genomes(self, genomes: Sequence[ImmutableGenome]) -> SortResult:
		if not self._instances:
			raise PreconditionViolation("Instances must be set before sorting genomes.")
		return self._coordinator.submit_sort(genomes, self._instances).result()

	@staticmethod
	def assign_ranks_to_genomes(sort_result: SortResult, genomes: Sequence[ImmutableGenome]) -> list[int]:
		"""
		Rank of every position of `genomes` (0 = best).

		Equal genomes occupy consecutive ranks and receive them in input order.
		"""
		ranks: list[Optional[int]] = [None] * len(genomes)
		for rank, ranked_genome in enumerate(sort_result.ranking):
			for index, genome in enumerate(genomes):
				if ranks[index] is None and genome == ranked_genome:
					ranks[index] = rank
					break
		missing = [str(genomes[index]) for index, rank in enumerate(ranks) if rank is None]
		if missing:
			raise PreconditionViolation(f"Sort result does not rank the genomes {missing}.")
		return ranks

	def _ranks_of(self, points: Sequence[SearchPoint]) -> list[int]:
		genomes = [point.genome for point in points]
		return self.assign_ranks_to_genomes(self.sort_genomes(genomes), genomes)

	@abstractmethod
	def sort(self, points: Sequence[SearchPoint]) -> list[int]:
		...


class RepairedGenomeSearchPointSorter(GenomeAssistedSorter):
	"""Points whose genome had to be repaired are ranked behind all others."""

	def sort(self, points: Sequence[SearchPoint]) -> list[int]:
		ranks = self._ranks_of(points)
		return sorted(range(len(points)), key=lambda index: (points[index].is_repaired, ranks[index]))


class GenomeSearchPointSorter(GenomeAssistedSorter):
	def sort(self, points: Sequence[SearchPoint]) -> list[int]:
		ranks = self._ranks_of(points)
		return sorted(range(len(points)), key=lambda index: ranks[index])


# =============================================================================
# Status
# =============================================================================

class ContinuousOptimizationStrategyStatus(Serializable):
	"""Original incumbent, current instances and most recent sorting of a continuous phase."""

	def __init__(
		self,
		original_incumbent: Optional[Genome],
		current_evaluation_instances: Sequence[Instance],
		most_recent_sorting: Optional[list[dict[str, Any]]],
	):
		self.original_incumbent = original_incumbent
		self.current_evaluation_instances = list(current_evaluation_instances)
		self.most_recent_sorting = most_recent_sorting

	def serialize(self) -> dict[str, Any]:
		return {
			"original_incumbent": None if self.original_incumbent is None else self.original_incumbent.to_dict(),
			"current_evaluation_instances": instances_to_list(self.current_evaluation_instances),
			"most_recent_sorting": self.most_recent_sorting,
		}

	@classmethod
	def deserialize(cls, data: dict[str, Any]) -> 'ContinuousOptimizationStrategyStatus':
		incumbent = data.get("original_incumbent")
		return cls(
			None if incumbent is None else Genome.from_dict(incumbent),
			instances_from_list(data["current_evaluation_instances"]),
			data.get("most_recent_sorting"),
		)


# =============================================================================
# Strategy base
# =============================================================================

class ContinuousOptimizationStrategyBase(PopulationUpdateStrategy):
	"""
	Continuous phase over the competitive population.

	Args:
		configuration: Tuner configuration
		tree: Parameter tree
		builder: Genome builder used for search point repair
		coordinator: Evaluation coordinator, also the source of stored results
		sorter: Sorter handed to the optimizer
		strategy_configuration: Options of this continuous phase
		rng: Random number handle
		logger: Component logger
	"""

	STATUS_FILE_NAME = "status.continuous.json"

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		sorter: GenomeAssistedSorter,
		strategy_configuration: StrategyConfiguration,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		super().__init__(configuration)
		self.tree = tree
		self.builder = builder
		self.strategy_configuration = strategy_configuration
		self.sorter = sorter
		self.rng = rng
		self._coordinator = coordinator
		self._log = logger or TunerLogger(type(self).__name__)

		self.original_incumbent: Optional[Genome] = None
		self.current_evaluation_instances: list[Instance] = []
		self.most_recent_sorting: Optional[list[SearchPoint]] = None
		self._current_generation = 0

	# =========================================================================
	# Hooks
	# =========================================================================

	@property
	@abstractmethod
	def optimizer(self):
		"""Continuous optimizer with next_generation, any_termination_criterion_met and status dumps."""
		...

	@property
	@abstractmethod
	def optimizer_status_file_name(self) -> str:
		...

	@abstractmethod
	def initialize_continuous_optimizer(self, base_population: Population, incumbent: Optional[IncumbentGenomeWrapper]) -> None:
		...

	@abstractmethod
	def define_competitive_population(self, original_competitives: Sequence[Genome]) -> list[Genome]:
		...

	@abstractmethod
	def restore_search_point(self, data: dict[str, Any]) -> SearchPoint:
		...

	def has_fixed_instances(self) -> bool:
		return self.strategy_configuration.fix_instances

	# =========================================================================
	# PopulationUpdateStrategy
	# =========================================================================

	def initialize(
		self,
		base_population: Population,
		incumbent: Optional[IncumbentGenomeWrapper],
		instances: Sequence[Instance],
	) -> None:
		if base_population is None:
			raise PreconditionViolation("A continuous phase needs a base population.")
		self.current_evaluation_instances = list(instances)
		self.sorter.update_instances(self.current_evaluation_instances)
		self.original_incumbent = self._locate_incumbent(base_population, incumbent)
		self.initialize_continuous_optimizer(base_population, incumbent)

	def perform_iteration(self, generation: int, instances: Sequence[Instance]) -> None:
		if generation < 0:
			raise ValueError(f"Generation must be nonnegative, but was {generation}.")
		self._current_generation = generation
		if not self.has_fixed_instances():
			self.current_evaluation_instances = list(instances)
			self.sorter.update_instances(self.current_evaluation_instances)
		self.most_recent_sorting = self.optimizer.next_generation()

	def find_incumbent_genome(self) -> IncumbentGenomeWrapper:
		if not self.most_recent_sorting:
			raise RuntimeError("Cannot determine an incumbent before the first iteration.")
		genome = self.most_recent_sorting[0].genome
		stored = self._coordinator.storage.all_results(genome)
		results = {instance: stored[instance] for instance in self.current_evaluation_instances if instance in stored}
		return IncumbentGenomeWrapper(genome, self._current_generation, results)

	def finish_phase(self, base_population: Population) -> Population:
		if self.most_recent_sorting is None:
			return base_population
		population = Population(base_population.configuration)
		for genome in base_population.get_non_competitive_mates():
			population.add_genome(Genome.copy_of(genome), is_competitive=False)
		for genome in self.define_competitive_population(base_population.get_competitive_individuals()):
			population.add_genome(genome, is_competitive=True)
		self.most_recent_sorting = None
		return population

	def next_strategy(self, strategies: Sequence[PopulationUpdateStrategy]) -> int:
		from algotune.strategies.gga import GgaStrategy
		return find_strategy_index(strategies, GgaStrategy)

	def has_terminated(self) -> bool:
		return self.optimizer.any_termination_criterion_met()

	def log_population(self) -> None:
		if self.most_recent_sorting is None:
			return
		points = "\n ".join(str(point) for point in self.most_recent_sorting)
		self._log.debug(f"Current sorting:\n {points}")

	def dump_status(self) -> None:
		sorting = None
		if self.most_recent_sorting is not None:
			sorting = [point.to_dict() for point in self.most_recent_sorting]
		ContinuousOptimizationStrategyStatus(
			self.original_incumbent,
			self.current_evaluation_instances,
			sorting,
		).save(self.status_path(self.STATUS_FILE_NAME))
		self.optimizer.dump_status(str(self.status_path(self.optimizer_status_file_name)))

	def use_status_dump(self, genetic_engineering) -> None:
		status = self.read_strategy_status()
		self.original_incumbent = status.original_incumbent
		self.current_evaluation_instances = status.current_evaluation_instances
		self.sorter.update_instances(self.current_evaluation_instances)
		self.most_recent_sorting = None
		if status.most_recent_sorting is not None:
			self.most_recent_sorting = [self.restore_search_point(point) for point in status.most_recent_sorting]
		self.optimizer.use_status_dump(str(self.status_path(self.optimizer_status_file_name)))

	def read_strategy_status(self) -> ContinuousOptimizationStrategyStatus:
		status, _ = ContinuousOptimizationStrategyStatus.load(self.status_path(self.STATUS_FILE_NAME))
		return status

	# =========================================================================
	# Helpers
	# =========================================================================

	@staticmethod
	def _locate_incumbent(population: Population, incumbent: Optional[IncumbentGenomeWrapper]) -> Optional[Genome]:
		"""Copy of the population's incumbent genome (with its age), if there is an incumbent."""
		if incumbent is None:
			return None
		for genome in population.get_competitive_individuals():
			if genome == incumbent.genome:
				return Genome.copy_of(genome)
		return incumbent.create_mutable_genome()

	def _copy_incumbent_with_age_of(self, ages: list[int]) -> Genome:
		"""Copy of the original incumbent that takes one of `ages`, its own one if available."""
		age = self.original_incumbent.age if self.original_incumbent.age in ages else ages[0]
		ages.remove(age)
		return Genome.copy_of(self.original_incumbent, age=age)

	@staticmethod
	def _remove_age(ages: list[int], age: int) -> None:
		if age in ages:
			ages.remove(age)
