"""
Surrogate model hooks of the GGA phase.

A surrogate learns from the tournament ranks collected so far and can
suggest offspring ("genetic engineering") and weight non-competitive mates
for sexual selection. The model itself lives outside this package; GGA only
talks to it through the GeneticEngineering protocol.
"""

from typing import Mapping, Protocol, Sequence, runtime_checkable

from algotune.errors import ConfigurationError
from algotune.evaluation.tournament import GenomeTournamentRank
from algotune.genomes.genome import Genome, ImmutableGenome


@runtime_checkable
class GeneticEngineering(Protocol):
	"""Surrogate model used by GGA."""

	def train_forest(self, ranks: Mapping[ImmutableGenome, Sequence[GenomeTournamentRank]], generation: int) -> None:
		...

	def engineer_genomes(
		self,
		competitive_parents: Sequence[Genome],
		non_competitive_mates: Sequence[Genome],
		genomes_for_distance_computation: Sequence[Genome],
	) -> list[Genome]:
		"""One engineered offspring per competitive parent, flagged `is_engineered`."""
		...

	def get_attractiveness_measure(self, non_competitive_mates: Sequence[Genome]) -> list[float]:
		"""One rank-like weight per mate, lower is more attractive."""
		...


class NoGeneticEngineering:
	"""Stand-in when no surrogate is configured: uniform attractiveness, no engineering."""

	def train_forest(self, ranks: Mapping[ImmutableGenome, Sequence[GenomeTournamentRank]], generation: int) -> None:
		pass

	def engineer_genomes(
		self,
		competitive_parents: Sequence[Genome],
		non_competitive_mates: Sequence[Genome],
		genomes_for_distance_computation: Sequence[Genome],
	) -> list[Genome]:
		raise ConfigurationError("Engineering genomes requires a surrogate model, but none was configured.")

	def get_attractiveness_measure(self, non_competitive_mates: Sequence[Genome]) -> list[float]:
		return [1.0] * len(non_competitive_mates)
