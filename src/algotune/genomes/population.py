"""
Population: competitive genomes plus non-competitive mating pool.

Usage:
	population = Population(config)
	population.add_genome(builder.create_random_genome(0), is_competitive=True)
	removed = population.age()
	population.replace_individuals_with_mutants(builder)
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from algotune.config import TunerConfiguration
from algotune.errors import PreconditionViolation
from algotune.genomes.genome import Genome


@dataclass(frozen=True)
class AgeRemovals:
	"""Number of genomes removed per group by Population.age()."""
	competitive: int
	non_competitive: int

	@property
	def total(self) -> int:
		return self.competitive + self.non_competitive


class Population:
	"""
	Two ordered genome collections with an age-based life cycle.

	Args:
		configuration: Supplies the maximum genome age and the mutant ratio
		competitive: Initial competitive genomes; if given, must not be empty
		non_competitive: Initial non-competitive genomes
	"""

	def __init__(
		self,
		configuration: TunerConfiguration,
		competitive: Optional[Iterable[Genome]] = None,
		non_competitive: Optional[Iterable[Genome]] = None,
	):
		self._configuration = configuration
		self._competitive: list[Genome] = []
		self._non_competitive: list[Genome] = list(non_competitive or [])
		if competitive is not None:
			self._competitive = list(competitive)
			if not self._competitive:
				raise PreconditionViolation("A population needs at least one competitive genome")

	@classmethod
	def copy_of(cls, original: 'Population') -> 'Population':
		"""Deep copy: every genome is copied."""
		copy = cls(original._configuration)
		copy._competitive = [Genome.copy_of(genome) for genome in original._competitive]
		copy._non_competitive = [Genome.copy_of(genome) for genome in original._non_competitive]
		return copy

	@property
	def configuration(self) -> TunerConfiguration:
		return self._configuration

	@property
	def count(self) -> int:
		return self.competitive_count + self.non_competitive_count

	@property
	def competitive_count(self) -> int:
		return len(self._competitive)

	@property
	def non_competitive_count(self) -> int:
		return len(self._non_competitive)

	@property
	def all_genomes(self) -> list[Genome]:
		return self._competitive + self._non_competitive

	def get_competitive_individuals(self) -> tuple[Genome, ...]:
		return tuple(self._competitive)

	def get_non_competitive_mates(self) -> tuple[Genome, ...]:
		return tuple(self._non_competitive)

	def add_genome(self, genome: Genome, is_competitive: bool) -> None:
		if is_competitive:
			self._competitive.append(genome)
		else:
			self._non_competitive.append(genome)

	def age(self) -> AgeRemovals:
		"""Age every genome once and remove those older than the maximum age."""
		max_age = self._configuration.max_genome_age
		removed = []
		for group in (self._competitive, self._non_competitive):
			before = len(group)
			for genome in group:
				genome.age_once()
			group[:] = [genome for genome in group if genome.age <= max_age]
			removed.append(before - len(group))
		return AgeRemovals(*removed)

	def replace_individuals_with_mutants(self, builder) -> None:
		"""Replace a share of the non-competitive genomes by random genomes of the same age."""
		number = math.ceil(self._configuration.population_mutant_ratio * len(self._non_competitive))
		indices = builder.rng.choose_random_subset(range(len(self._non_competitive)), number)
		# only non-competitive genomes are replaced, so the incumbent survives
		for index in indices:
			self._non_competitive[index] = builder.create_random_genome(self._non_competitive[index].age)

	def is_empty(self) -> bool:
		return not self._competitive and not self._non_competitive

	def age_histogram(self) -> dict[int, int]:
		histogram: dict[int, int] = {}
		for genome in self.all_genomes:
			histogram[genome.age] = histogram.get(genome.age, 0) + 1
		return histogram

	def to_dict(self) -> dict[str, Any]:
		return {
			"competitive": [genome.to_dict() for genome in self._competitive],
			"non_competitive": [genome.to_dict() for genome in self._non_competitive],
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any], configuration: TunerConfiguration) -> 'Population':
		population = cls(configuration)
		population._competitive = [Genome.from_dict(g) for g in data["competitive"]]
		population._non_competitive = [Genome.from_dict(g) for g in data["non_competitive"]]
		return population

	def __repr__(self) -> str:
		return f"Population(competitive={self.competitive_count}, non_competitive={self.non_competitive_count})"
