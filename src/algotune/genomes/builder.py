"""
Creation, mutation, crossover and repair of genomes.

Usage:
	builder = GenomeBuilder(tree, config, rng)
	genome = builder.create_random_genome(age=0)
	child = builder.crossover(mother, father)
	builder.mutate(child)
"""

from collections import deque
from enum import IntEnum, auto
from typing import Callable, Optional

from algotune.config import TunerConfiguration
from algotune.errors import PreconditionViolation, RepairExhaustedError
from algotune.genomes.genome import Genome
from algotune.logger import TunerLogger
from algotune.parameters.tree import ParameterNode, ParameterTree, TreeNode
from algotune.randomizer import Randomizer


class _ParameterOrigin(IntEnum):
	OPEN = auto()
	FIRST_PARENT = auto()
	SECOND_PARENT = auto()


class GenomeBuilder:
	"""
	Genome operators over one parameter tree.

	Args:
		tree: Parameter tree describing the genes
		configuration: Supplies mutation rate, variance percentage, crossover
			switch probability and the number of repair rounds
		rng: Random number handle
		validity_predicate: Optional extra constraint on complete genomes
			(e.g. forbidden parameter combinations)
	"""

	def __init__(
		self,
		tree: ParameterTree,
		configuration: TunerConfiguration,
		rng: Randomizer,
		validity_predicate: Optional[Callable[[Genome], bool]] = None,
		logger: Optional[TunerLogger] = None,
	):
		if tree is None or configuration is None:
			raise PreconditionViolation("Genome builder needs a parameter tree and a configuration")
		self.tree = tree
		self.rng = rng
		self.maximum_repair_attempts = configuration.max_repair_attempts
		self._crossover_switch_probability = configuration.crossover_switch_probability
		self._mutation_rate = configuration.mutation_rate
		self._mutation_variance_percentage = configuration.mutation_variance_percentage
		self._validity_predicate = validity_predicate
		self._parameters = tree.get_parameters()
		self._log = logger or TunerLogger("GenomeBuilder")

	def create_random_genome(self, age: int) -> Genome:
		genome = Genome(age=age)
		for node in self._parameters:
			genome.set_gene(node.identifier, node.domain.generate_random_value(self.rng))
		self.make_genome_valid(genome)
		return genome

	def mutate(self, genome: Genome) -> None:
		"""Mutate every parameter with the mutation rate, then repair."""
		for node in self._parameters:
			if self.rng.decide(self._mutation_rate):
				self._mutate_parameter(genome, node)
		self.make_genome_valid(genome)

	def crossover(self, parent1: Genome, parent2: Genome) -> Genome:
		"""
		Breadth-first crossover over the parameter tree.

		Genes on which both parents agree are copied while the origin is still
		open. Otherwise a coin decides the parent, biased to stay with the parent
		chosen for the enclosing node (switching with the crossover switch
		probability).
		"""
		child = Genome(age=0)
		root = self.tree.root
		queue = deque([(root, self._set_gene_value(root, parent1, parent2, child, _ParameterOrigin.OPEN))])
		while queue:
			node, origin = queue.popleft()
			for child_node in node.children:
				queue.append((child_node, self._set_gene_value(child_node, parent1, parent2, child, origin)))
		return child

	def is_genome_valid(self, genome: Genome) -> bool:
		for node in self._parameters:
			try:
				value = genome.get_gene_value(node.identifier)
			except KeyError:
				return False
			if not node.domain.contains_value(value):
				return False
		return self._validity_predicate is None or self._validity_predicate(genome)

	def make_genome_valid(self, genome: Genome) -> None:
		"""
		Repair `genome` in place by mutating one parameter after the other.

		Raises:
			RepairExhaustedError: If the genome is still invalid after
				`maximum_repair_attempts` rounds over all parameters
		"""
		if self.is_genome_valid(genome):
			return
		self._log.debug(f"Repairing genome {genome}.")
		for _ in range(self.maximum_repair_attempts):
			for node in self._parameters:
				self._mutate_parameter(genome, node)
				if self.is_genome_valid(genome):
					self._log.debug(f"Repaired genome, now {genome}.")
					return
		raise RepairExhaustedError(
			f"Tried to make the genome {genome} valid by mutating each parameter {self.maximum_repair_attempts} times, "
			"but failed. To solve this issue, either set a higher repair threshold, simplify the rules for valid "
			"genomes, or pass a more intelligent repair operator."
		)

	def _mutate_parameter(self, genome: Genome, node: ParameterNode) -> None:
		current = genome.get_gene_value(node.identifier)
		if not node.domain.contains_value(current):
			# out-of-domain values cannot be mutated locally
			genome.set_gene(node.identifier, node.domain.generate_random_value(self.rng))
			return
		genome.set_gene(
			node.identifier,
			node.domain.mutate_value(current, self._mutation_variance_percentage, self.rng),
		)

	def _set_gene_value(
		self,
		node: TreeNode,
		parent1: Genome,
		parent2: Genome,
		child: Genome,
		last_origin: _ParameterOrigin,
	) -> _ParameterOrigin:
		if not isinstance(node, ParameterNode):
			return last_origin

		value1 = parent1.get_gene_value(node.identifier)
		value2 = parent2.get_gene_value(node.identifier)
		if last_origin == _ParameterOrigin.OPEN and value1 == value2:
			child.set_gene(node.identifier, value1)
			return last_origin

		if last_origin == _ParameterOrigin.FIRST_PARENT:
			probability_first = 1 - self._crossover_switch_probability
		elif last_origin == _ParameterOrigin.SECOND_PARENT:
			probability_first = self._crossover_switch_probability
		else:
			probability_first = 0.5

		if self.rng.decide(probability_first):
			child.set_gene(node.identifier, value1)
			return _ParameterOrigin.FIRST_PARENT
		child.set_gene(node.identifier, value2)
		return _ParameterOrigin.SECOND_PARENT
