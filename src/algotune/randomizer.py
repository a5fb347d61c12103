"""
Seeded random number handle shared by every stochastic operation.

A Randomizer is passed explicitly to builders, optimizers and strategies.
Scalar draws come from a random.Random instance, vector draws (CMA-ES
sampling) from a torch.Generator seeded from the same seed. Workers that
need their own stream call spawn() to get an independent child handle.

Usage:
	rng = Randomizer(seed=42)
	if rng.decide(0.25):
		value = rng.sample_truncated_normal(3.0, 1.0, 0.0, 10.0)
	parents = rng.choose_random_subset(genomes, 4)
"""

import math
import random
import threading
from statistics import NormalDist
from typing import Optional, Sequence, TypeVar

import torch

T = TypeVar('T')


class Randomizer:
	"""Thread-safe random number source with a reproducible seed."""

	def __init__(self, seed: Optional[int] = None):
		if seed is None:
			seed = random.SystemRandom().randrange(2 ** 31)
		self.seed = seed
		self._random = random.Random(seed)
		self._generator = torch.Generator()
		self._generator.manual_seed(seed)
		self._lock = threading.Lock()

	def spawn(self) -> 'Randomizer':
		"""Create an independent child handle whose seed is drawn from this one."""
		return Randomizer(self.next_int(0, 2 ** 31 - 1))

	def next_int(self, minimum: int, maximum: int) -> int:
		"""Random integer in [minimum, maximum)."""
		with self._lock:
			return self._random.randrange(minimum, maximum)

	def next_double(self) -> float:
		"""Random float in [0, 1)."""
		with self._lock:
			return self._random.random()

	def decide(self, probability: float = 0.5) -> bool:
		if probability < 0 or probability > 1:
			raise ValueError(f"A probability parameter {probability} lower than 0 or higher than 1 was given.")
		return self.next_double() < probability

	def choose_random_subset(self, items: Sequence[T], number: int) -> list[T]:
		"""
		Choose `number` distinct positions of `items` in random order.

		Args:
			items: Source items (duplicates are treated as separate positions)
			number: Subset size, between 0 and len(items)

		Returns:
			List of chosen items in the order they were drawn
		"""
		source = list(items)
		if number < 0 or number > len(source):
			raise ValueError(
				f"Can only return between 0 and {len(source)} items of a list with a total length of "
				f"{len(source)}, but the requested number was {number}"
			)
		permutation = list(range(len(source)))
		chosen = []
		for i in range(number):
			j = self.next_int(i, len(permutation))
			permutation[i], permutation[j] = permutation[j], permutation[i]
			chosen.append(source[permutation[i]])
		return chosen

	def shuffle(self, items: Sequence[T]) -> list[T]:
		return self.choose_random_subset(items, len(items))

	def inflate_and_shuffle(self, items: Sequence[T], number: int) -> list[T]:
		"""Repeat `items` as often as fits into `number`, fill up randomly and shuffle."""
		items = list(items)
		repeats, remaining = divmod(number, len(items))
		chosen = items * repeats
		if remaining > 0:
			chosen.extend(self.choose_random_subset(items, remaining))
		return self.choose_random_subset(chosen, number)

	def split_into_random_balanced_subsets(self, items: Sequence[T], maximum_size: int) -> list[list[T]]:
		"""Shuffle `items` and split them into the fewest subsets of at most `maximum_size` whose sizes differ by at most one."""
		if maximum_size <= 0:
			raise ValueError(f"Subset size must be positive, got {maximum_size}")
		shuffled = self.shuffle(items)
		if not shuffled:
			return []
		count = math.ceil(len(shuffled) / maximum_size)
		return [shuffled[i::count] for i in range(count)]

	def sample_uniform(self, minimum: float, maximum: float) -> float:
		# Go from the average to avoid overflow for huge intervals.
		average = minimum / 2 + maximum / 2
		return average + (2 * self.next_double() - 1) * (maximum - average)

	def sample_normal(self, mean: float, standard_deviation: float) -> float:
		with self._lock:
			return self._random.gauss(mean, standard_deviation)

	def sample_truncated_normal(self, mean: float, standard_deviation: float, minimum: float, maximum: float) -> float:
		"""Sample from N(mean, sd^2) restricted to [minimum, maximum] by inversion."""
		if standard_deviation <= 0 or minimum == maximum:
			return min(max(mean, minimum), maximum)
		distribution = NormalDist(mean, standard_deviation)
		lower = distribution.cdf(minimum)
		upper = distribution.cdf(maximum)
		quantile = lower + self.sample_uniform(0, 1) * (upper - lower)
		# inv_cdf is undefined on the closed ends
		quantile = min(max(quantile, 1e-300), 1 - 1e-16)
		return min(max(distribution.inv_cdf(quantile), minimum), maximum)

	def sample_cauchy(self, location: float, scale: float) -> float:
		return location + scale * math.tan(math.pi * (self.next_double() - 0.5))

	def standard_normal_vector(self, size: int) -> torch.Tensor:
		"""Vector of independent N(0, 1) samples as float64."""
		with self._lock:
			return torch.randn(size, generator=self._generator, dtype=torch.float64)

	def roulette_select(self, weights: Sequence[float], interpret_as_rank: bool = False) -> int:
		"""
		Choose an index with probability proportional to its weight.

		With interpret_as_rank, lower weights are better: rank r is turned into
		max - r + min, so the worst rank still keeps a positive chance.
		"""
		if not weights:
			raise ValueError("Cannot select from an empty weight list")
		if interpret_as_rank:
			low, high = min(weights), max(weights)
			weights = [high - w + low for w in weights]
		threshold = self.next_double() * sum(weights)
		for i, weight in enumerate(weights):
			threshold -= weight
			if threshold <= 0:
				return i
		return len(weights) - 1

	def __repr__(self) -> str:
		return f"Randomizer(seed={self.seed})"
