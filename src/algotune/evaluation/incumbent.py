"""
Incumbent bookkeeping: the best genome known so far, with its results.
"""

from dataclasses import dataclass, field
from typing import Any

from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.results import RunResult
from algotune.genomes.genome import Genome, ImmutableGenome


@dataclass
class IncumbentGenomeWrapper:
	"""Incumbent genome, the generation it was found in and its run results."""
	genome: ImmutableGenome
	generation: int
	results: dict[Instance, RunResult] = field(default_factory=dict)

	def __post_init__(self):
		if isinstance(self.genome, Genome):
			self.genome = ImmutableGenome(self.genome)
		if self.generation < 0:
			raise ValueError(f"Generation must be nonnegative, but was {self.generation}.")

	def create_mutable_genome(self, age: int = 0) -> Genome:
		return self.genome.create_mutable_genome(age)

	def to_dict(self) -> dict[str, Any]:
		return {
			"genome": dict(self.genome.content_key()),
			"generation": self.generation,
			"results": {str(instance): result.to_dict() for instance, result in self.results.items()},
		}
