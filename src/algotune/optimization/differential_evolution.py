"""
Adaptive differential evolution (JADE).

Each generation builds one trial point per target with current-to-pbest/1
mutation and binomial crossover. Trials replace their targets when the
sorter ranks them better. The mean mutation factor and crossover rate move
towards the Lehmer mean and arithmetic mean of the successful values.

Usage:
	config = DifferentialEvolutionConfiguration(best_percentage=0.2)
	jade = DifferentialEvolution(sorter, make_point, config, rng)
	jade.initialize(points, max_generations=10)
	while not jade.any_termination_criterion_met():
		best_first = jade.next_generation()
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

import torch

from algotune.errors import PreconditionViolation
from algotune.logger import TunerLogger
from algotune.optimization.search_point import SearchPoint, SearchPointSorter
from algotune.randomizer import Randomizer
from algotune.serialization import Serializable

P = TypeVar('P', bound=SearchPoint)

MAX_TRIAL_SAMPLES = 100
MAX_DISTANCE_TO_BEST = 10e-4


@dataclass
class DifferentialEvolutionConfiguration:
	"""JADE parameters."""

	# Share of best points pbest is drawn from, in (0, 1]
	best_percentage: float = 0.1
	initial_mean_mutation_factor: float = 0.5
	initial_mean_crossover_rate: float = 0.5
	learning_rate: float = 0.1

	def __post_init__(self):
		if not 0 < self.best_percentage <= 1:
			raise ValueError(f"Best percentage must be in (0, 1], but was {self.best_percentage}.")
		if not 0 <= self.initial_mean_mutation_factor <= 1:
			raise ValueError(f"Initial mean mutation factor must be in [0, 1], but was {self.initial_mean_mutation_factor}.")
		if not 0 <= self.initial_mean_crossover_rate <= 1:
			raise ValueError(f"Initial mean crossover rate must be in [0, 1], but was {self.initial_mean_crossover_rate}.")
		if not 0 <= self.learning_rate <= 1:
			raise ValueError(f"Learning rate must be in [0, 1], but was {self.learning_rate}.")


class DifferentialEvolutionStatus(Serializable):
	"""Sorted population, generation counters and the adapted means."""

	FILE_NAME = "status.de.json"

	def __init__(
		self,
		sorted_population: list[dict[str, Any]],
		current_generation: int,
		max_generations: int,
		mean_mutation_factor: float,
		mean_crossover_rate: float,
	):
		if current_generation < 0:
			raise ValueError(f"Generation must be nonnegative, but was {current_generation}.")
		if max_generations < current_generation:
			raise ValueError(
				f"Maximum number of generations must not be smaller than current generation {current_generation}, "
				f"but was {max_generations}."
			)
		if not 0 <= mean_mutation_factor <= 1:
			raise ValueError(f"Mean mutation factor must be in [0, 1], but was {mean_mutation_factor}.")
		if not 0 <= mean_crossover_rate <= 1:
			raise ValueError(f"Mean crossover rate must be in [0, 1], but was {mean_crossover_rate}.")
		self.sorted_population = sorted_population
		self.current_generation = current_generation
		self.max_generations = max_generations
		self.mean_mutation_factor = mean_mutation_factor
		self.mean_crossover_rate = mean_crossover_rate

	def serialize(self) -> dict[str, Any]:
		return {
			"sorted_population": self.sorted_population,
			"current_generation": self.current_generation,
			"max_generations": self.max_generations,
			"mean_mutation_factor": self.mean_mutation_factor,
			"mean_crossover_rate": self.mean_crossover_rate,
		}

	@classmethod
	def deserialize(cls, data: dict[str, Any]) -> 'DifferentialEvolutionStatus':
		return cls(**data)


def _encode_point(point: SearchPoint) -> dict[str, Any]:
	if hasattr(point, "to_dict"):
		return point.to_dict()
	return {"values": point.values.tolist()}


class DifferentialEvolution(Generic[P]):
	"""
	JADE over search points.

	Args:
		sorter: Ranks search points, best first
		search_point_factory: Builds a point from (values, target point)
		configuration: JADE parameters
		rng: Random number handle
		point_restorer: Rebuilds a point from its serialized form (status dumps)
		logger: Component logger (default: TunerLogger("DifferentialEvolution"))
	"""

	def __init__(
		self,
		sorter: SearchPointSorter[P],
		search_point_factory: Callable[[torch.Tensor, P], P],
		configuration: DifferentialEvolutionConfiguration,
		rng: Randomizer,
		point_restorer: Optional[Callable[[dict[str, Any]], P]] = None,
		logger: Optional[TunerLogger] = None,
	):
		if sorter is None or search_point_factory is None or configuration is None:
			raise PreconditionViolation("Differential evolution needs a sorter, a search point factory and a configuration")
		self._sorter = sorter
		self._search_point_factory = search_point_factory
		self._configuration = configuration
		self._rng = rng
		self._point_restorer = point_restorer or (lambda data: SearchPoint(data["values"]))
		self._log = logger or TunerLogger("DifferentialEvolution")

		self.mean_mutation_factor = configuration.initial_mean_mutation_factor
		self.mean_crossover_rate = configuration.initial_mean_crossover_rate
		self._sorted_population: Optional[list[P]] = None
		self._current_generation = 0
		self._max_generations = 0

	@property
	def current_generation(self) -> int:
		return self._current_generation

	def initialize(self, initial_positions: Sequence[P], max_generations: int) -> None:
		if max_generations < 0:
			raise ValueError(f"Maximum number of generations must be nonnegative, but was {max_generations}.")
		self._current_generation = 0
		self._max_generations = max_generations
		if initial_positions is None:
			raise PreconditionViolation("Initial positions are required")
		population = list(initial_positions)
		if not population:
			raise ValueError("Population must not be empty.")
		self._sorted_population = [population[index] for index in self._sorter.sort(population)]

	def next_generation(self) -> list[P]:
		"""Create trial points, select, adapt. Returns the population, best first."""
		self._check_is_initialized("next_generation")
		self._current_generation += 1
		self._log.debug(f"Mean mutation factor, crossover rate: {self.mean_mutation_factor}; {self.mean_crossover_rate}")

		mutation_factors = []
		crossover_rates = []
		trials = []
		for target in self._sorted_population:
			mutation_factors.append(self._generate_mutation_factor())
			crossover_rates.append(self._generate_crossover_rate())
			trials.append(self._generate_trial_point(target, mutation_factors[-1], crossover_rates[-1]))

		ranks = self._sorter.determine_ranks(self._sorted_population + trials)

		successful_factors = []
		successful_rates = []
		for i, target in enumerate(self._sorted_population):
			trial = trials[i]
			if ranks[target] > ranks[trial] and not torch.equal(target.values, trial.values):
				self._sorted_population[i] = trial
				successful_factors.append(mutation_factors[i])
				successful_rates.append(crossover_rates[i])

		self._adapt_parameters(successful_factors, successful_rates)
		self._sorted_population.sort(key=lambda point: ranks[point])
		return list(self._sorted_population)

	def any_termination_criterion_met(self) -> bool:
		self._check_is_initialized("any_termination_criterion_met")
		if self._current_generation >= self._max_generations:
			self._log.info("JADE: Termination criterion met.")
			self._log.debug("MaxGenerations")
			return True
		if self._max_distance_criterion_met():
			self._log.info("JADE: Termination criterion met.")
			self._log.debug("MaxDist")
			return True
		return False

	def dump_status(self, path: str) -> None:
		self._check_is_initialized("dump_status")
		DifferentialEvolutionStatus(
			[_encode_point(point) for point in self._sorted_population],
			self._current_generation,
			self._max_generations,
			self.mean_mutation_factor,
			self.mean_crossover_rate,
		).save(path)

	def use_status_dump(self, path: str) -> None:
		status, _ = DifferentialEvolutionStatus.load(path)
		self._sorted_population = [self._point_restorer(point) for point in status.sorted_population]
		self._current_generation = status.current_generation
		self._max_generations = status.max_generations
		self.mean_mutation_factor = status.mean_mutation_factor
		self.mean_crossover_rate = status.mean_crossover_rate

	def _generate_mutation_factor(self) -> float:
		# Terminates with probability 1: at most half of the Cauchy mass lies below zero.
		factor = self._rng.sample_cauchy(self.mean_mutation_factor, 0.1)
		while factor <= 0:
			factor = self._rng.sample_cauchy(self.mean_mutation_factor, 0.1)
		return min(factor, 1.0)

	def _generate_crossover_rate(self) -> float:
		rate = self._rng.sample_normal(self.mean_crossover_rate, 0.1)
		return max(0.0, min(rate, 1.0))

	def _generate_trial_point(self, target: P, mutation_factor: float, crossover_rate: float) -> P:
		samples = 0
		while True:
			donor = self._mutate(target, mutation_factor)
			trial = self._search_point_factory(self._crossover(target, donor, crossover_rate), target)
			samples += 1
			if trial.is_valid() or samples >= MAX_TRIAL_SAMPLES:
				break

		if not trial.is_valid():
			trial = self._search_point_factory(target.values.clone(), target)
			self._log.warning(
				f"Did not manage to find a valid point based on {target}. "
				"If this happens often, consider changing your search point type or search point factory."
			)
		self._log.debug(f"Found valid trial point in {samples} tries.")
		return trial

	def _mutate(self, target: P, mutation_factor: float) -> torch.Tensor:
		others = [point.values for point in self._sorted_population if point is not target]
		first, second = self._rng.choose_random_subset(others, 2)
		good = self._choose_random_good_search_point()
		return target.values + mutation_factor * (good.values - target.values) + mutation_factor * (first - second)

	def _crossover(self, target: P, donor: torch.Tensor, crossover_rate: float) -> torch.Tensor:
		fixed_index = self._rng.next_int(0, donor.shape[0])
		trial = target.values.clone()
		for i in range(trial.shape[0]):
			if i == fixed_index or self._rng.decide(crossover_rate):
				trial[i] = donor[i]
		return trial

	def _choose_random_good_search_point(self) -> P:
		number_good = math.ceil(self._configuration.best_percentage * len(self._sorted_population))
		return self._sorted_population[self._rng.next_int(0, number_good)]

	def _adapt_parameters(self, successful_factors: list[float], successful_rates: list[float]) -> None:
		rate = self._configuration.learning_rate
		if successful_factors:
			lehmer_mean = sum(f * f for f in successful_factors) / sum(successful_factors)
			self.mean_mutation_factor = (1 - rate) * self.mean_mutation_factor + rate * lehmer_mean
		if successful_rates:
			self.mean_crossover_rate = (1 - rate) * self.mean_crossover_rate + rate * sum(successful_rates) / len(successful_rates)

	def _max_distance_criterion_met(self) -> bool:
		best = self._sorted_population[0].values
		distance = max(float(torch.linalg.norm(point.values - best)) for point in self._sorted_population)
		return distance < MAX_DISTANCE_TO_BEST

	def _check_is_initialized(self, member: str) -> None:
		if self._sorted_population is None:
			raise RuntimeError(f"Cannot execute {member} before calling initialize.")
