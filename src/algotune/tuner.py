"""
Algorithm Tuner

Drives a tuning run: builds the evaluation machinery and the phase
strategies, creates the initial population and runs one strategy iteration
per generation. Whenever the current strategy terminates, its phase is
finished and the strategy it names takes over the population.

The number of instances per generation grows linearly from
`start_number_instances` to `end_number_instances`, which is reached at
`goal_generation`.

Usage:
	from algotune import AlgorithmTuner, TunerConfiguration, SortByPenalizedRuntime

	config = TunerConfiguration(population_size=16, generations=10, random_seed=42)
	with AlgorithmTuner(solver, SortByPenalizedRuntime(10, config.cpu_timeout), instances, tree, config) as tuner:
		incumbent = tuner.run()
	print(incumbent.genome.to_filtered_gene_string(tree))
"""

import math
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from algotune.config import TunerConfiguration
from algotune.errors import ConfigurationError
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.evaluation.racing import RunEvaluator
from algotune.evaluation.results import ContinuousResult, RunResult, result_from_dict
from algotune.evaluation.storage import ResultStorage
from algotune.evaluation.target_algorithm import TargetAlgorithm
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.population import Population
from algotune.logger import Logger, TunerLogger
from algotune.parameters.tree import ParameterTree
from algotune.progress import ProgressTracker
from algotune.randomizer import Randomizer
from algotune.serialization import Serializable, instances_from_list, instances_to_list
from algotune.strategies.base import PopulationUpdateStrategy
from algotune.strategies.factory import StrategyFactory
from algotune.strategies.genetic_engineering import GeneticEngineering, NoGeneticEngineering


# =============================================================================
# Instance selection
# =============================================================================

class InstanceSelector:
	"""
	Random instance subsets whose size grows linearly with the generation.

	Args:
		instances: All training instances
		configuration: Start/end number of instances and goal generation
		rng: Random handle for the subsets
	"""

	def __init__(self, instances: Sequence[Instance], configuration: TunerConfiguration, rng: Randomizer):
		self._instances = list(instances)
		self._start = configuration.start_number_instances
		self._end = configuration.end_number_instances
		self._goal_generation = configuration.goal_generation
		self._rng = rng
		if self._end > len(self._instances):
			raise ConfigurationError(
				f"The tuning uses up to {self._end} instances per generation, "
				f"but only {len(self._instances)} instances were given."
			)

	def number_of_instances(self, generation: int) -> int:
		if generation < 0:
			raise ValueError(f"Generation index must be at least 0, but was {generation}.")
		if generation >= self._goal_generation:
			return self._end
		linear_increase = (self._end - self._start) / self._goal_generation
		return round(linear_increase * generation + self._start)

	def select(self, generation: int) -> list[Instance]:
		return self._rng.choose_random_subset(self._instances, self.number_of_instances(generation))


def incumbent_score(results: dict[Instance, RunResult]) -> float:
	"""Average objective value of valid results, or average runtime for runtime tuning."""
	if not results:
		return math.nan
	values = [result.value for result in results.values() if isinstance(result, ContinuousResult) and result.is_valid]
	if values:
		return sum(values) / len(values)
	return sum(result.runtime for result in results.values()) / len(results)


# =============================================================================
# Status
# =============================================================================

class TunerStatus(Serializable):
	"""Generation counter, active strategy, base population and incumbent of a run."""

	FILE_NAME = "status.tuner.json"

	def __init__(
		self,
		generation: int,
		strategy_index: int,
		started_strategies: Sequence[int],
		population: Population,
		incumbent: Optional[IncumbentGenomeWrapper],
	):
		if generation < 0:
			raise ValueError(f"Generation must be nonnegative, but was {generation}.")
		self.generation = generation
		self.strategy_index = strategy_index
		self.started_strategies = sorted(set(started_strategies))
		self.population = population
		self.incumbent = incumbent

	def serialize(self) -> dict[str, Any]:
		incumbent = None
		if self.incumbent is not None:
			instances = list(self.incumbent.results)
			incumbent = {
				"genome": dict(self.incumbent.genome.content_key()),
				"generation": self.incumbent.generation,
				"instances": instances_to_list(instances),
				"results": [self.incumbent.results[instance].to_dict() for instance in instances],
			}
		return {
			"configuration": self.population.configuration.to_dict(),
			"generation": self.generation,
			"strategy_index": self.strategy_index,
			"started_strategies": self.started_strategies,
			"population": self.population.to_dict(),
			"incumbent": incumbent,
		}

	@classmethod
	def deserialize(cls, data: dict[str, Any]) -> 'TunerStatus':
		configuration = TunerConfiguration.from_dict(data["configuration"])
		incumbent = None
		if data["incumbent"] is not None:
			entry = data["incumbent"]
			instances = instances_from_list(entry["instances"])
			incumbent = IncumbentGenomeWrapper(
				ImmutableGenome(Genome(entry["genome"])),
				entry["generation"],
				{instance: result_from_dict(result) for instance, result in zip(instances, entry["results"])},
			)
		return cls(
			data["generation"],
			data["strategy_index"],
			data["started_strategies"],
			Population.from_dict(data["population"], configuration),
			incumbent,
		)


# =============================================================================
# Tuner
# =============================================================================

class AlgorithmTuner:
	"""
	Population-based hybrid tuner.

	Args:
		target_algorithm: Runs one genome on one instance
		run_evaluator: Sorting, priorities and racing of genomes
		instances: Training instances
		tree: Parameter tree of the target algorithm
		configuration: Tuner configuration (validated here)
		genetic_engineering: Surrogate model hooks (required for engineering or sexual selection)
		validity_predicate: Extra constraint on genomes, checked on top of the tree's domains
		logger: Run-level log sink; progress lines go there. Without one, a run Logger
			is created in `configuration.log_directory` if that is set

	Raises:
		ConfigurationError: If the configuration is inconsistent or needs a missing surrogate
	"""

	def __init__(
		self,
		target_algorithm: TargetAlgorithm,
		run_evaluator: RunEvaluator,
		instances: Sequence[Instance],
		tree: ParameterTree,
		configuration: TunerConfiguration,
		genetic_engineering: Optional[GeneticEngineering] = None,
		validity_predicate: Optional[Callable[[Genome], bool]] = None,
		logger: Optional[Callable[[str], None]] = None,
	):
		configuration.validate()
		self.configuration = configuration
		self.tree = tree
		self._genetic_engineering = genetic_engineering or NoGeneticEngineering()

		self.rng = Randomizer(configuration.random_seed)
		self.builder = GenomeBuilder(tree, configuration, self.rng, validity_predicate)
		self._instance_selector = InstanceSelector(instances, configuration, self.rng)

		self.run_log: Optional[Logger] = None
		if logger is None and configuration.log_directory is not None:
			self.run_log = Logger("tuning", log_dir=configuration.log_directory, console=False)
			logger = self.run_log
		self._log = TunerLogger("AlgorithmTuner", file_logger=logger)
		self.storage = ResultStorage()
		self.coordinator = EvaluationCoordinator(
			target_algorithm, run_evaluator, configuration, self.storage, self.rng.spawn()
		)
		try:
			self.strategies = StrategyFactory.create(
				configuration, tree, self.builder, self.coordinator, self.rng, genetic_engineering
			)
		except ConfigurationError:
			self.close()
			raise

		self.progress = ProgressTracker(
			logger=logger or self._log.info,
			minimize=getattr(run_evaluator, "ascending", True),
			prefix="[Tuner]",
			total_generations=configuration.generations,
		)
		self.base_population = Population(configuration)
		self.incumbent: Optional[IncumbentGenomeWrapper] = None
		self.current_generation = 0
		self.strategy_index = 0
		self._started_strategies: set[int] = set()

	@property
	def current_strategy(self) -> PopulationUpdateStrategy:
		return self.strategies[self.strategy_index]

	def __enter__(self) -> 'AlgorithmTuner':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	def close(self) -> None:
		self.coordinator.shutdown()
		if self.run_log is not None:
			self.run_log.close()

	# =========================================================================
	# Run
	# =========================================================================

	def run(self) -> IncumbentGenomeWrapper:
		"""
		Tune until the configured number of generations is reached.

		Returns:
			Incumbent of the final generation

		Raises:
			EvaluationFault: If a generation could not be evaluated
		"""
		if self.run_log is not None:
			self.run_log.log_configuration(self.configuration)
			self.run_log.header(f"Phase {type(self.current_strategy).__name__} from generation {self.current_generation}")
		if self.base_population.is_empty():
			self.base_population = self.initialize_population()
			self.current_strategy.initialize(Population.copy_of(self.base_population), None, [])
			self._started_strategies.add(self.strategy_index)

		while self.current_generation < self.configuration.generations:
			generation = self.current_generation
			self._log.info(f"Generation {generation}/{self.configuration.generations}.")
			self.current_strategy.log_population()

			instances = self._instance_selector.select(generation)
			strategy = self._change_strategy_if_terminated(instances)
			strategy.perform_iteration(generation, instances)
			self._update_incumbent(strategy.find_incumbent_genome())
			self.progress.tick(
				incumbent_score(self.incumbent.results),
				generation=generation,
				phase=type(strategy).__name__,
			)

			self.current_generation += 1
			# strategies may skip population updates in the final generation
			if generation != self.configuration.generations - 1 and self.configuration.status_directory is not None:
				self.dump_status()

		self.finish_phase()
		genomes, evaluations = self.storage.evaluation_statistic()
		self._log.info(f"Tuning finished: {evaluations} evaluations of {genomes} genomes.")
		self.progress.log_summary()
		return self.incumbent

	def initialize_population(self) -> Population:
		"""Random population, half competitive (the odd one out decided at random)."""
		size = self.configuration.population_size
		non_competitive_size = size // 2
		if size % 2 == 1 and self.rng.decide():
			non_competitive_size += 1
		population = Population(self.configuration)
		for genome in self._create_random_genomes(non_competitive_size):
			population.add_genome(genome, is_competitive=False)
		for genome in self._create_random_genomes(size - non_competitive_size):
			population.add_genome(genome, is_competitive=True)
		return population

	def finish_phase(self) -> None:
		self.base_population = self.current_strategy.finish_phase(self.base_population)

	def _create_random_genomes(self, number: int) -> list[Genome]:
		genomes = []
		# ages cycle through 1..max_genome_age from a random start
		age = 1 + self.rng.next_int(0, self.configuration.max_genome_age)
		for _ in range(number):
			genomes.append(self.builder.create_random_genome(age))
			age = 1 + age % self.configuration.max_genome_age
		return genomes

	def _change_strategy_if_terminated(self, instances: Sequence[Instance]) -> PopulationUpdateStrategy:
		strategy = self.current_strategy
		switches = 0
		while strategy.has_terminated():
			if switches > len(self.strategies):
				raise ConfigurationError("Every strategy terminates right after initialization.")
			self.finish_phase()
			self.strategy_index = strategy.next_strategy(self.strategies)
			new_strategy = self.current_strategy
			new_strategy.initialize(self.base_population, self.incumbent, instances)
			self._started_strategies.add(self.strategy_index)
			self._log.info(f"Changing strategy from {type(strategy).__name__} to {type(new_strategy).__name__}.")
			if self.run_log is not None:
				self.run_log.header(f"Phase {type(new_strategy).__name__} from generation {self.current_generation}")
			strategy = new_strategy
			switches += 1
		return strategy

	def _update_incumbent(self, generation_best: IncumbentGenomeWrapper) -> None:
		if self.incumbent is None or self.incumbent.genome != generation_best.genome:
			self._log.info("Found new incumbent.")
			self._log.info(f"Incumbent genome:\n{generation_best.genome.create_mutable_genome().to_filtered_gene_string(self.tree)}")
			self.incumbent = generation_best
		else:
			# keep the generation it was found in, refresh the results
			self.incumbent.genome = generation_best.genome
			self.incumbent.results = generation_best.results
			self._log.debug(f"Incumbent genome:\n{generation_best.genome.create_mutable_genome().to_filtered_gene_string(self.tree)}")

	# =========================================================================
	# Status
	# =========================================================================

	def _status_file(self) -> Path:
		if self.configuration.status_directory is None:
			raise ConfigurationError("No status directory configured.")
		return Path(self.configuration.status_directory) / TunerStatus.FILE_NAME

	def dump_status(self) -> None:
		"""Write the run status and the status of every started strategy."""
		TunerStatus(
			self.current_generation,
			self.strategy_index,
			self._started_strategies,
			self.base_population,
			self.incumbent,
		).save(self._status_file())
		for index in sorted(self._started_strategies):
			self.strategies[index].dump_status()

	def use_status_dump(self) -> None:
		"""Continue a run from the status directory."""
		status, _ = TunerStatus.load(self._status_file())
		self.current_generation = status.generation
		self.strategy_index = status.strategy_index
		self._started_strategies = set(status.started_strategies)
		self.base_population = status.population
		self.incumbent = status.incumbent
		for index in status.started_strategies:
			self.strategies[index].use_status_dump(self._genetic_engineering)
		self._log.info(f"Continuing tuning at generation {self.current_generation}.")
