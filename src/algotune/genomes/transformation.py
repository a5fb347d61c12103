"""
Ordinal real-valued encoding of complete genomes.

Parameters are ordered by identifier. Categorical values are encoded by
their index in the domain, numerical values by themselves. The encoding
tolerates inactive parameters: every parameter is always encoded.
"""

from typing import Sequence

import torch

from algotune.genomes.genome import Genome
from algotune.parameters.tree import ParameterTree


class TolerantGenomeTransformation:
	"""Converts genomes to float64 vectors and back."""

	def __init__(self, tree: ParameterTree):
		self._parameters = tree.get_parameters(sort=True)

	@property
	def parameters(self):
		return list(self._parameters)

	def convert_genome_to_array(self, genome: Genome) -> torch.Tensor:
		return torch.tensor(
			[node.domain.convert_to_float(genome.get_gene_value(node.identifier)) for node in self._parameters],
			dtype=torch.float64,
		)

	def round_to_valid_values(self, values: torch.Tensor) -> torch.Tensor:
		"""Round every coordinate that does not belong to a real-valued domain."""
		rounded = values.clone()
		for i, node in enumerate(self._parameters):
			if not node.domain.is_float:
				rounded[i] = torch.round(rounded[i])
		return rounded

	def convert_back(self, values: Sequence[float]) -> Genome:
		"""Build a genome from (already rounded) values."""
		genome = Genome()
		for node, value in zip(self._parameters, [float(v) for v in values]):
			genome.set_gene(node.identifier, node.domain.convert_back(value))
		return genome
