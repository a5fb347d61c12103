"""
Genome: one complete parameter assignment plus age and origin metadata.

Equality and hashing only look at the genes, so a genome keeps its identity
across copies, ageing and serialization. Age and the engineered flag are
metadata.

Usage:
	genome = Genome({"alpha": 0.3, "heuristic": "tabu"}, age=0)
	copy = Genome.copy_of(genome, age=2)
	assert copy == genome and hash(copy) == hash(genome)
"""

from typing import Any, Mapping, Optional

from algotune.parameters.tree import ParameterTree


def _content_key(genes: Mapping[str, Any]) -> tuple:
	return tuple(sorted(genes.items(), key=lambda item: item[0]))


def _format_value(value: Any, decimals: Optional[int] = None) -> str:
	if decimals is not None and isinstance(value, float):
		return f"{round(value, decimals)}"
	return f"{value}"


class Genome:
	"""
	Mapping from parameter identifier to allele.

	Attributes:
		age: Number of generations the genome survived (>= 0)
		is_engineered: True when the genome was suggested by the surrogate model
	"""

	def __init__(self, genes: Optional[Mapping[str, Any]] = None, age: int = 0, is_engineered: bool = False):
		self._genes: dict[str, Any] = dict(genes or {})
		self.age = age
		self.is_engineered = is_engineered

	@classmethod
	def copy_of(cls, other: 'Genome', age: Optional[int] = None) -> 'Genome':
		"""Copy of `other`, optionally with a different age."""
		return cls(other._genes, age=other.age if age is None else age, is_engineered=other.is_engineered)

	@property
	def age(self) -> int:
		return self._age

	@age.setter
	def age(self, value: int) -> None:
		if value < 0:
			raise ValueError(f"Age must be nonnegative, but was {value}")
		self._age = value

	@property
	def genes(self) -> dict[str, Any]:
		"""Copy of the gene mapping."""
		return dict(self._genes)

	def age_once(self) -> None:
		self._age += 1

	def get_gene_value(self, identifier: str) -> Any:
		return self._genes[identifier]

	def set_gene(self, identifier: str, value: Any) -> None:
		self._genes[identifier] = value

	def get_active_genes(self, tree: ParameterTree) -> dict[str, Any]:
		"""Genes that the tree marks as active for this assignment."""
		active = tree.find_active_identifiers(self._genes)
		return {identifier: value for identifier, value in self._genes.items() if identifier in active}

	def to_filtered_gene_string(self, tree: ParameterTree) -> str:
		genes = ", ".join(f"{k}: {_format_value(v)}" for k, v in sorted(self.get_active_genes(tree).items()))
		return f"[{genes}]"

	def to_capped_decimal_string(self, decimals: int = 4) -> str:
		genes = ", ".join(f"{k}: {_format_value(v, decimals)}" for k, v in _content_key(self._genes))
		return f"[{genes}](Age: {self.age})[Engineered: {'yes' if self.is_engineered else 'no'}]"

	def content_key(self) -> tuple:
		return _content_key(self._genes)

	def to_dict(self) -> dict[str, Any]:
		return {"genes": dict(self._genes), "age": self.age, "is_engineered": self.is_engineered}

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> 'Genome':
		return cls(data["genes"], age=data.get("age", 0), is_engineered=data.get("is_engineered", False))

	def __eq__(self, other: object) -> bool:
		if isinstance(other, (Genome, ImmutableGenome)):
			return self.content_key() == other.content_key()
		return NotImplemented

	def __hash__(self) -> int:
		return hash(self.content_key())

	def __len__(self) -> int:
		return len(self._genes)

	def __str__(self) -> str:
		genes = ", ".join(f"{k}: {v}" for k, v in _content_key(self._genes))
		return f"[{genes}](Age: {self.age})[Engineered: {'yes' if self.is_engineered else 'no'}]"

	def __repr__(self) -> str:
		return f"Genome({self._genes!r}, age={self.age})"


class ImmutableGenome:
	"""Frozen gene assignment, used as key for stored results and tournament statistics."""

	__slots__ = ("_genes", "_key", "_hash")

	def __init__(self, genome: Genome):
		self._genes = genome.genes
		self._key = _content_key(self._genes)
		self._hash = hash(self._key)

	def get_gene_value(self, identifier: str) -> Any:
		return self._genes[identifier]

	def content_key(self) -> tuple:
		return self._key

	def create_mutable_genome(self, age: int = 0) -> Genome:
		return Genome(self._genes, age=age)

	def __eq__(self, other: object) -> bool:
		if isinstance(other, (Genome, ImmutableGenome)):
			return self._key == other.content_key()
		return NotImplemented

	def __hash__(self) -> int:
		return self._hash

	def __str__(self) -> str:
		return "[" + ", ".join(f"{k}: {v}" for k, v in self._key) + "]"

	def __repr__(self) -> str:
		return f"ImmutableGenome({self._genes!r})"
