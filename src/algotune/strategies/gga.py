"""
Gender-based genetic algorithm (GGA) phase.

Each iteration evaluates the competitive genomes in mini tournaments. The
tournament winners mate with non-competitive genomes (roulette selection,
optionally weighted by the surrogate's attractiveness measure), the
offspring replaces the genomes that die of old age, and the population
ages. The incumbent never dies of old age while it is the incumbent.

Terminates when the incumbent stayed the same for the configured number of
generations or after the configured number of GGA generations.

Usage:
	gga = GgaStrategy(config, tree, builder, coordinator, NoGeneticEngineering(), rng)
	gga.initialize(population, None, instances)
	while not gga.has_terminated():
		gga.perform_iteration(generation, instances)
"""

import math
from typing import Any, Optional, Sequence

from algotune.config import ContinuousOptimizationMethod, TunerConfiguration
from algotune.errors import EvaluationFault, PreconditionViolation
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.evaluation.tournament import GenomeTournamentRank, TournamentWinnersWithRank
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.population import Population
from algotune.logger import TunerLogger
from algotune.parameters.tree import ParameterTree
from algotune.randomizer import Randomizer
from algotune.serialization import Serializable
from algotune.strategies.base import PopulationUpdateStrategy, find_strategy_index
from algotune.strategies.covariance_matrix_adaptation import covariance_matrix_adaptation_strategy_type
from algotune.strategies.differential_evolution import DifferentialEvolutionStrategy
from algotune.strategies.genetic_engineering import GeneticEngineering


class GgaStatus(Serializable):
	"""
	Population, counters and every tournament rank seen so far.

	Ranks are keyed by genome content: entries of equal genomes are merged
	when the status is read.
	"""

	FILE_NAME = "status.gga.json"

	def __init__(
		self,
		population: Population,
		iteration_counter: int,
		incumbent_kept_counter: int,
		all_known_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]],
	):
		if incumbent_kept_counter < 0:
			raise ValueError(f"Incumbent kept counter should be nonnegative, but is {incumbent_kept_counter}.")
		if incumbent_kept_counter > iteration_counter:
			raise ValueError(
				f"Incumbent kept counter is {incumbent_kept_counter}, "
				f"which is greater than the number of iterations ({iteration_counter})!"
			)
		if all_known_ranks is None:
			raise PreconditionViolation("GGA status needs the known ranks")
		self.population = population
		self.iteration_counter = iteration_counter
		self.incumbent_kept_counter = incumbent_kept_counter
		self.all_known_ranks = all_known_ranks

	def serialize(self) -> dict[str, Any]:
		return {
			"configuration": self.population.configuration.to_dict(),
			"population": self.population.to_dict(),
			"iteration_counter": self.iteration_counter,
			"incumbent_kept_counter": self.incumbent_kept_counter,
			"all_known_ranks": [
				{"genome": dict(genome.content_key()), "ranks": [rank.to_dict() for rank in ranks]}
				for genome, ranks in self.all_known_ranks.items()
			],
		}

	@classmethod
	def deserialize(cls, data: dict[str, Any]) -> 'GgaStatus':
		configuration = TunerConfiguration.from_dict(data["configuration"])
		all_known_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]] = {}
		for entry in data["all_known_ranks"]:
			genome = ImmutableGenome(Genome(entry["genome"]))
			all_known_ranks.setdefault(genome, []).extend(GenomeTournamentRank(**rank) for rank in entry["ranks"])
		return cls(
			Population.from_dict(data["population"], configuration),
			data["iteration_counter"],
			data["incumbent_kept_counter"],
			all_known_ranks,
		)


class GgaStrategy(PopulationUpdateStrategy):
	"""
	GGA phase.

	Args:
		configuration: Tuner configuration
		tree: Parameter tree (population logging)
		builder: Crossover, mutation and mutants
		coordinator: Evaluates generations as mini tournaments
		genetic_engineering: Surrogate model hooks
		rng: Random number handle
		logger: Component logger
	"""

	def __init__(
		self,
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		genetic_engineering: GeneticEngineering,
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		super().__init__(configuration)
		if genetic_engineering is None:
			raise PreconditionViolation("GGA needs a genetic engineering model (use NoGeneticEngineering for none)")
		self._tree = tree
		self._builder = builder
		self._coordinator = coordinator
		self._genetic_engineering = genetic_engineering
		self._rng = rng
		self._log = logger or TunerLogger("Gga")

		self.all_known_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]] = {}
		self._population: Optional[Population] = None
		self._current_generation = 0
		self._iteration_counter = 0
		self._incumbent_kept_counter = 0
		self._most_recent_best: Optional[IncumbentGenomeWrapper] = None
		# population member (with its age) that won the most recent generation
		self._incumbent_genome: Optional[Genome] = None

	@property
	def population(self) -> Optional[Population]:
		return self._population

	@property
	def iteration_counter(self) -> int:
		return self._iteration_counter

	@property
	def incumbent_kept_counter(self) -> int:
		return self._incumbent_kept_counter

	def initialize(
		self,
		base_population: Population,
		incumbent: Optional[IncumbentGenomeWrapper],
		instances: Sequence[Instance],
	) -> None:
		self._population = base_population
		self._iteration_counter = 0
		self._incumbent_kept_counter = 0

	def perform_iteration(self, generation: int, instances: Sequence[Instance]) -> None:
		if self._population is None:
			raise RuntimeError("GGA has not been initialized.")
		self._iteration_counter += 1
		self._current_generation = generation
		result = self._perform_selection(instances)

		previous = None if self._most_recent_best is None else self._most_recent_best.genome
		if previous is not None and previous == result.generation_best:
			self._incumbent_kept_counter += 1
		else:
			self._incumbent_kept_counter = 0
		self._most_recent_best = IncumbentGenomeWrapper(
			result.generation_best,
			generation,
			result.generation_best_results,
		)
		self._incumbent_genome = self._find_population_member(result.generation_best)

		# the expensive population update is skipped in the last generation
		if generation < self.configuration.generations - 1:
			winners = TournamentWinnersWithRank.from_gga_result(result)
			self._update_all_known_ranks(winners)
			self._update_population([parent.create_mutable_genome() for parent in winners.competitive_parents])

	def find_incumbent_genome(self) -> IncumbentGenomeWrapper:
		if self._most_recent_best is None:
			raise RuntimeError("Cannot determine an incumbent before the first iteration.")
		return self._most_recent_best

	def finish_phase(self, base_population: Population) -> Population:
		return self._population

	def next_strategy(self, strategies: Sequence[PopulationUpdateStrategy]) -> int:
		method = self.configuration.continuous_optimization_method
		match method:
			case ContinuousOptimizationMethod.NONE:
				next_type = GgaStrategy
			case ContinuousOptimizationMethod.JADE:
				next_type = DifferentialEvolutionStrategy
			case ContinuousOptimizationMethod.CMA_ES:
				next_type = covariance_matrix_adaptation_strategy_type(self.configuration)
			case _:
				raise NotImplementedError(f"{method} is not mapped to a strategy type in GGA.")
		return find_strategy_index(strategies, next_type)

	def has_terminated(self) -> bool:
		if self._incumbent_kept_counter >= self.configuration.max_gga_generations_with_same_incumbent:
			self._log.info("GGA: Termination criterion met.")
			self._log.debug("Incumbent kept.")
			return True
		if self._iteration_counter >= self.configuration.max_gga_generations:
			self._log.info("GGA: Termination criterion met.")
			self._log.debug("MaxGenerations")
			return True
		return False

	def log_population(self) -> None:
		if self._population is None:
			return
		competitive = "\n ".join(g.to_filtered_gene_string(self._tree) for g in self._population.get_competitive_individuals())
		non_competitive = "\n ".join(g.to_filtered_gene_string(self._tree) for g in self._population.get_non_competitive_mates())
		self._log.debug("Current population:")
		self._log.debug(f"Competitive genomes:\n {competitive}")
		self._log.debug(f"Noncompetitive genomes:\n {non_competitive}")

	def dump_status(self) -> None:
		status = GgaStatus(self._population, self._iteration_counter, self._incumbent_kept_counter, self.all_known_ranks)
		status.save(self.status_path(GgaStatus.FILE_NAME))

	def use_status_dump(self, genetic_engineering: GeneticEngineering) -> None:
		self._genetic_engineering = genetic_engineering
		status, _ = GgaStatus.load(self.status_path(GgaStatus.FILE_NAME))
		self._population = status.population
		self._iteration_counter = status.iteration_counter
		self._incumbent_kept_counter = status.incumbent_kept_counter
		self.all_known_ranks = status.all_known_ranks

	# =========================================================================
	# Selection
	# =========================================================================

	def _perform_selection(self, instances: Sequence[Instance]):
		participants = [ImmutableGenome(genome) for genome in self._population.get_competitive_individuals()]
		future = self._coordinator.submit_generation(participants, instances, self._current_generation)
		try:
			return future.result()
		except Exception as error:
			raise EvaluationFault(
				f"The generation evaluation with GGA in generation {self._current_generation} resulted in an exception!"
			) from error

	def _find_population_member(self, genome: ImmutableGenome) -> Genome:
		for member in self._population.get_competitive_individuals():
			if member == genome:
				return member
		return genome.create_mutable_genome()

	def _update_all_known_ranks(self, winners: TournamentWinnersWithRank) -> None:
		total = sum(len(ranks) for ranks in winners.genome_to_ranks.values())
		if total != self._population.competitive_count:
			raise ValueError(
				f"We expect {self._population.competitive_count} individual tournament results. Only found {total}."
			)
		for genome, ranks in winners.genome_to_ranks.items():
			self.all_known_ranks.setdefault(genome, []).extend(ranks)

	# =========================================================================
	# Population update
	# =========================================================================

	def _update_population(self, competitive_parents: list[Genome]) -> None:
		dying_competitive = self._count_dying_competitive_genomes()
		dying_non_competitive = self._count_dying(self._population.get_non_competitive_mates())
		offspring = self._generate_and_mutate_all_offspring(competitive_parents, dying_competitive + dying_non_competitive)
		self._add_to_population(offspring, dying_competitive, dying_non_competitive)
		self._age_population_and_keep_incumbent_alive()
		if any(child.is_engineered for child in offspring):
			self._population.replace_individuals_with_mutants(self._builder)

	def _count_dying(self, genomes: Sequence[Genome]) -> int:
		return sum(1 for genome in genomes if genome.age >= self.configuration.max_genome_age)

	def _count_dying_competitive_genomes(self) -> int:
		elitism_discount = 1 if self._keep_incumbent_artificially_alive() else 0
		return max(0, self._count_dying(self._population.get_competitive_individuals()) - elitism_discount)

	def _keep_incumbent_artificially_alive(self) -> bool:
		return self._incumbent_genome.age >= self.configuration.max_genome_age

	def _generate_and_mutate_all_offspring(self, competitive_parents: list[Genome], total_dying: int) -> list[Genome]:
		naturally_reproduced = self._compute_number_of_naturally_reproduced_genomes(total_dying)
		natural = self._perform_crossovers(competitive_parents, naturally_reproduced)
		engineered = self._perform_genetic_engineering(total_dying - naturally_reproduced, competitive_parents)
		offspring = natural + engineered
		for child in offspring:
			self._builder.mutate(child)
		return offspring

	def _compute_number_of_naturally_reproduced_genomes(self, total_dying: int) -> int:
		ratio = 0.0
		if self.configuration.start_engineering_at_iteration <= self._current_generation:
			ratio = self.configuration.engineered_population_ratio
		return math.floor((1 - ratio) * total_dying)

	def _perform_crossovers(self, competitive_parents: list[Genome], number: int) -> list[Genome]:
		if number == 0:
			return []
		mates = self._population.get_non_competitive_mates()
		if not mates:
			raise PreconditionViolation("Crossover needs at least one non-competitive genome.")
		chosen_parents = self._rng.inflate_and_shuffle(competitive_parents, number)
		if self.configuration.enable_sexual_selection:
			attractiveness = list(self._genetic_engineering.get_attractiveness_measure(mates))
		else:
			attractiveness = [1.0] * len(mates)
		offspring = []
		for parent in chosen_parents:
			mate = mates[self._rng.roulette_select(attractiveness, interpret_as_rank=True)]
			offspring.append(self._builder.crossover(parent, mate))
		return offspring

	def _perform_genetic_engineering(self, number: int, competitive_parents: list[Genome]) -> list[Genome]:
		# the model is trained whenever engineering or sexual selection may need it
		if self.configuration.requires_genetic_engineering:
			self._genetic_engineering.train_forest(self.all_known_ranks, self._current_generation)
		if number <= 0:
			return []
		chosen_parents = self._rng.inflate_and_shuffle(competitive_parents, number)
		return list(self._genetic_engineering.engineer_genomes(
			chosen_parents,
			self._population.get_non_competitive_mates(),
			self._population.all_genomes,
		))

	def _add_to_population(self, genomes: Sequence[Genome], competitive: int, non_competitive: int) -> None:
		competitive_added = 0
		non_competitive_added = 0
		for genome in genomes:
			enough_non_competitive = non_competitive_added >= non_competitive
			enough_competitive = competitive_added >= competitive
			as_competitive = enough_non_competitive or (not enough_competitive and self._rng.decide())
			self._population.add_genome(genome, as_competitive)
			if as_competitive:
				competitive_added += 1
			else:
				non_competitive_added += 1

	def _age_population_and_keep_incumbent_alive(self) -> None:
		incumbent = self._incumbent_genome
		initial_age = incumbent.age
		# decide before ageing
		keep_alive = self._keep_incumbent_artificially_alive()
		self._population.age()
		if incumbent.age == initial_age:
			incumbent.age_once()
		if keep_alive:
			# age() removed the incumbent
			self._population.add_genome(incumbent, is_competitive=True)
