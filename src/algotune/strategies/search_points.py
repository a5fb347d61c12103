"""
Search points that stand for genomes.

The continuous phases optimize real vectors, but the sorter evaluates
genomes. Each point type below decodes its vector into a genome on
construction and keeps it as `genome` (an ImmutableGenome):

- ContinuizedGenomeSearchPoint: every parameter, bounded (global CMA-ES)
- PartialGenomeSearchPoint: continuous parameters only, merged into an
  incumbent (local CMA-ES)
- GenomeSearchPoint: continuous parameters only, unbounded, merged into a
  parent genome (differential evolution)

A parameter is "continuous" if its domain holds floats, or integers with at
least `minimum_domain_size` values.

Usage:
	lower, upper = ContinuizedGenomeSearchPoint.obtain_parameter_bounds(tree)
	point = ContinuizedGenomeSearchPoint(values, tree, builder, lower, upper)
	if point.is_repaired:
		...
"""

from typing import Any, Optional

import torch

from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.transformation import TolerantGenomeTransformation
from algotune.optimization.search_point import BoundedSearchPoint, SearchPoint, as_vector
from algotune.parameters.domains import IntegerDomain, NumericalDomain
from algotune.parameters.tree import ParameterNode, ParameterTree
from algotune.randomizer import Randomizer


def _is_considered_continuous(node: ParameterNode, minimum_domain_size: int) -> bool:
	domain = node.domain
	return domain.is_float or (isinstance(domain, IntegerDomain) and domain.domain_size >= minimum_domain_size)


def _genome_from_dict(data: dict[str, Any]) -> ImmutableGenome:
	return ImmutableGenome(Genome(data))


class GenomeSearchPointConverter:
	"""
	Moves the continuous parameters of a genome into a vector and back.

	Args:
		tree: Parameter tree
		minimum_domain_size: Integer domains with fewer values are left alone
	"""

	def __init__(self, tree: ParameterTree, minimum_domain_size: int):
		self.continuous_parameters = self.extract_continuous_parameters(tree, minimum_domain_size)

	@staticmethod
	def extract_continuous_parameters(tree: ParameterTree, minimum_domain_size: int) -> list[ParameterNode]:
		return [node for node in tree.get_parameters(sort=True) if _is_considered_continuous(node, minimum_domain_size)]

	@property
	def dimension(self) -> int:
		return len(self.continuous_parameters)

	def transform_genome_into_values(self, genome: Genome | ImmutableGenome) -> torch.Tensor:
		return torch.tensor(
			[float(genome.get_gene_value(node.identifier)) for node in self.continuous_parameters],
			dtype=torch.float64,
		)

	def randomly_create_values(self, rng: Randomizer) -> torch.Tensor:
		return torch.tensor(
			[float(node.domain.generate_random_value(rng)) for node in self.continuous_parameters],
			dtype=torch.float64,
		)

	def merge_into_genome(self, values, base_genome: ImmutableGenome) -> Genome:
		"""Copy of `base_genome` with the continuous genes replaced by `values`."""
		values = as_vector(values)
		if values.shape[0] != self.dimension:
			identifiers = ", ".join(node.identifier for node in self.continuous_parameters)
			raise ValueError(
				f"Real-valued parameters are {identifiers} (Total: {self.dimension}), "
				f"but {values.shape[0]} values were provided."
			)
		genome = base_genome.create_mutable_genome()
		for node, value in zip(self.continuous_parameters, values.tolist()):
			if node.domain.is_float:
				genome.set_gene(node.identifier, float(value))
			else:
				genome.set_gene(node.identifier, int(round(value)))
		genome.is_engineered = False
		return genome


# =============================================================================
# Global CMA-ES
# =============================================================================

class ContinuizedGenomeSearchPoint(BoundedSearchPoint):
	"""
	Bounded point over all parameters, ordered by identifier.

	Categorical parameters are encoded by their value index, so their bounds
	are [0, size - 1]. Decoded genomes that violate the builder's constraints
	are repaired and the point remembers it in `is_repaired`.
	"""

	def __init__(self, values, tree: ParameterTree, builder: GenomeBuilder, lower_bounds, upper_bounds):
		super().__init__(values, lower_bounds, upper_bounds)
		transformation = TolerantGenomeTransformation(tree)
		genome = transformation.convert_back(transformation.round_to_valid_values(self.map_into_bounds()))
		self.is_repaired = False
		if not builder.is_genome_valid(genome):
			builder.make_genome_valid(genome)
			self.is_repaired = True
		self.genome = ImmutableGenome(genome)

	@classmethod
	def _with_genome(cls, genome: ImmutableGenome, values, lower_bounds, upper_bounds, is_repaired: bool = False):
		point = cls.__new__(cls)
		BoundedSearchPoint.__init__(point, values, lower_bounds, upper_bounds)
		point.genome = genome
		point.is_repaired = is_repaired
		return point

	@classmethod
	def create_from_genome(cls, genome: Genome, tree: ParameterTree) -> 'ContinuizedGenomeSearchPoint':
		values = TolerantGenomeTransformation(tree).convert_genome_to_array(genome)
		lower_bounds, upper_bounds = cls.obtain_parameter_bounds(tree)
		standardized = cls.standardize_values(values, lower_bounds, upper_bounds)
		return cls._with_genome(ImmutableGenome(genome), standardized, lower_bounds, upper_bounds)

	@staticmethod
	def obtain_parameter_bounds(tree: ParameterTree) -> tuple[torch.Tensor, torch.Tensor]:
		lower, upper = [], []
		for node in tree.get_parameters(sort=True):
			domain = node.domain
			if domain.is_categorical:
				lower.append(0.0)
				upper.append(float(domain.domain_size - 1))
			elif isinstance(domain, NumericalDomain):
				lower.append(float(domain.minimum))
				upper.append(float(domain.maximum))
			else:
				raise NotImplementedError(
					f"All domains should either be categorical or numerical, but the one of parameter "
					f"'{node.identifier}' is {type(domain).__name__}."
				)
		return torch.tensor(lower, dtype=torch.float64), torch.tensor(upper, dtype=torch.float64)

	def to_dict(self) -> dict[str, Any]:
		return {
			"values": self.values.tolist(),
			"genome": dict(self.genome.content_key()),
			"is_repaired": self.is_repaired,
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any], tree: ParameterTree) -> 'ContinuizedGenomeSearchPoint':
		lower_bounds, upper_bounds = cls.obtain_parameter_bounds(tree)
		return cls._with_genome(
			_genome_from_dict(data["genome"]), data["values"], lower_bounds, upper_bounds, data.get("is_repaired", False)
		)

	def __repr__(self) -> str:
		return f"{self.genome}{' (repaired)' if self.is_repaired else ''}"


# =============================================================================
# Local CMA-ES
# =============================================================================

class PartialGenomeSearchPoint(BoundedSearchPoint):
	"""Bounded point over the continuous parameters of a fixed underlying genome."""

	def __init__(
		self,
		underlying_genome: ImmutableGenome,
		values,
		converter: GenomeSearchPointConverter,
		builder: GenomeBuilder,
		lower_bounds,
		upper_bounds,
	):
		super().__init__(values, lower_bounds, upper_bounds)
		genome = converter.merge_into_genome(self.map_into_bounds(), underlying_genome)
		self.is_repaired = False
		if not builder.is_genome_valid(genome):
			builder.make_genome_valid(genome)
			self.is_repaired = True
		self.genome = ImmutableGenome(genome)

	@classmethod
	def _with_genome(cls, genome: ImmutableGenome, values, lower_bounds, upper_bounds, is_repaired: bool = False):
		point = cls.__new__(cls)
		BoundedSearchPoint.__init__(point, values, lower_bounds, upper_bounds)
		point.genome = genome
		point.is_repaired = is_repaired
		return point

	@classmethod
	def create_from_genome(cls, genome: Genome, tree: ParameterTree, minimum_domain_size: int) -> 'PartialGenomeSearchPoint':
		lower_bounds, upper_bounds = cls.obtain_parameter_bounds(tree, minimum_domain_size)
		values = GenomeSearchPointConverter(tree, minimum_domain_size).transform_genome_into_values(genome)
		standardized = cls.standardize_values(values, lower_bounds, upper_bounds)
		return cls._with_genome(ImmutableGenome(genome), standardized, lower_bounds, upper_bounds)

	@staticmethod
	def obtain_parameter_bounds(tree: ParameterTree, minimum_domain_size: int) -> tuple[torch.Tensor, torch.Tensor]:
		lower, upper = [], []
		for node in GenomeSearchPointConverter.extract_continuous_parameters(tree, minimum_domain_size):
			lower.append(float(node.domain.minimum))
			upper.append(float(node.domain.maximum))
		return torch.tensor(lower, dtype=torch.float64), torch.tensor(upper, dtype=torch.float64)

	def to_dict(self) -> dict[str, Any]:
		return {
			"values": self.values.tolist(),
			"genome": dict(self.genome.content_key()),
			"is_repaired": self.is_repaired,
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any], tree: ParameterTree, minimum_domain_size: int) -> 'PartialGenomeSearchPoint':
		lower_bounds, upper_bounds = cls.obtain_parameter_bounds(tree, minimum_domain_size)
		return cls._with_genome(
			_genome_from_dict(data["genome"]), data["values"], lower_bounds, upper_bounds, data.get("is_repaired", False)
		)

	def __repr__(self) -> str:
		return f"{self.genome}{' (repaired)' if self.is_repaired else ''}"


# =============================================================================
# Differential evolution
# =============================================================================

class GenomeSearchPoint(SearchPoint):
	"""
	Unbounded point over the continuous parameters of a parent genome.

	Invalid genomes are not repaired; JADE retries or keeps the target
	instead, so validity is the builder's verdict on the merged genome.
	"""

	def __init__(
		self,
		values,
		parent: 'GenomeSearchPoint',
		builder: GenomeBuilder,
		converter: Optional[GenomeSearchPointConverter] = None,
		underlying_genome: Optional[ImmutableGenome] = None,
	):
		super().__init__(values)
		self.converter = converter if converter is not None else parent.converter
		base = underlying_genome if underlying_genome is not None else parent.genome
		merged = self.converter.merge_into_genome(self.values, base)
		self._is_valid = builder.is_genome_valid(merged)
		self.genome = ImmutableGenome(merged)

	@classmethod
	def create_from_genome(
		cls,
		genome: Genome,
		tree: ParameterTree,
		minimum_domain_size: int,
		builder: GenomeBuilder,
	) -> 'GenomeSearchPoint':
		converter = GenomeSearchPointConverter(tree, minimum_domain_size)
		values = converter.transform_genome_into_values(genome)
		return cls(values, None, builder, converter=converter, underlying_genome=ImmutableGenome(genome))

	@classmethod
	def base_random_point_on_genome(
		cls,
		genome: Genome,
		tree: ParameterTree,
		minimum_domain_size: int,
		builder: GenomeBuilder,
	) -> 'GenomeSearchPoint':
		"""Point with random continuous values and the discrete values of `genome`."""
		converter = GenomeSearchPointConverter(tree, minimum_domain_size)
		values = converter.randomly_create_values(builder.rng)
		return cls(values, None, builder, converter=converter, underlying_genome=ImmutableGenome(genome))

	def is_valid(self) -> bool:
		return self._is_valid and super().is_valid()

	def to_dict(self) -> dict[str, Any]:
		return {"values": self.values.tolist(), "genome": dict(self.genome.content_key())}

	@classmethod
	def from_dict(
		cls,
		data: dict[str, Any],
		tree: ParameterTree,
		minimum_domain_size: int,
		builder: GenomeBuilder,
	) -> 'GenomeSearchPoint':
		converter = GenomeSearchPointConverter(tree, minimum_domain_size)
		return cls(data["values"], None, builder, converter=converter, underlying_genome=_genome_from_dict(data["genome"]))

	def __repr__(self) -> str:
		return str(self.genome)
