"""
AND/OR parameter tree.

AND nodes group independent sub-trees. Value nodes hold one parameter and an
optional child. OR nodes hold a categorical parameter whose chosen value
decides which child sub-tree is active.

Usage:
	root = AndNode([
		ValueNode("seed", IntegerDomain(0, 1000)),
		OrNode("heuristic", CategoricalDomain(["greedy", "tabu"]), {
			"tabu": ValueNode("tenure", IntegerDomain(1, 50)),
		}),
	])
	tree = ParameterTree(root)
	tree.find_active_identifiers({"seed": 3, "heuristic": "greedy", "tenure": 7})
	# -> {"seed", "heuristic"}
"""

from collections import Counter, deque
from typing import Any, Hashable, Iterator, Mapping, Optional, Sequence

from algotune.errors import ConfigurationError, PreconditionViolation
from algotune.parameters.domains import CategoricalDomain, Domain


class TreeNode:
	"""Node of the parameter tree."""

	@property
	def children(self) -> list['TreeNode']:
		return []


class ParameterNode(TreeNode):
	"""Node that represents a parameter."""

	def __init__(self, identifier: str, domain: Domain):
		self.identifier = identifier
		self.domain = domain

	def __repr__(self) -> str:
		return f"{type(self).__name__}({self.identifier!r}, {self.domain!r})"


class AndNode(TreeNode):
	"""Groups children that are optimized independently."""

	def __init__(self, children: Optional[Sequence[TreeNode]] = None):
		self._children = list(children or [])

	@property
	def children(self) -> list[TreeNode]:
		return self._children

	def add_child(self, child: TreeNode) -> None:
		self._children.append(child)


class ValueNode(ParameterNode):
	"""Parameter with an optional single child."""

	def __init__(self, identifier: str, domain: Domain, child: Optional[TreeNode] = None):
		super().__init__(identifier, domain)
		self._child = child

	@property
	def children(self) -> list[TreeNode]:
		return [self._child] if self._child is not None else []

	def set_child(self, child: TreeNode) -> None:
		self._child = child


class OrNode(ParameterNode):
	"""Categorical parameter whose value activates at most one child sub-tree."""

	def __init__(self, identifier: str, domain: CategoricalDomain, children: Optional[Mapping[Hashable, TreeNode]] = None):
		super().__init__(identifier, domain)
		self._branches: dict[Hashable, TreeNode] = {}
		for value, child in (children or {}).items():
			self.add_child(value, child)

	@property
	def children(self) -> list[TreeNode]:
		return list(self._branches.values())

	def add_child(self, value: Hashable, child: TreeNode) -> None:
		if not self.domain.contains_value(value):
			raise PreconditionViolation(f"Cannot add child for value {value!r} that is not part of the domain of {self.identifier}")
		self._branches[value] = child

	def try_get_child(self, value: Any) -> Optional[TreeNode]:
		return self._branches.get(value)


class ParameterTree:
	"""Rooted AND/OR tree with globally unique parameter identifiers."""

	def __init__(self, root: TreeNode):
		self.root = root
		if not self.identifiers_are_unique():
			duplicates = [i for i, n in Counter(p.identifier for p in self.get_parameters()).items() if n > 1]
			raise ConfigurationError(f"Parameter identifiers must be unique, duplicates: {duplicates}")

	def _breadth_first(self) -> Iterator[TreeNode]:
		queue = deque([self.root])
		while queue:
			node = queue.popleft()
			yield node
			queue.extend(node.children)

	def get_parameters(self, sort: bool = False) -> list[ParameterNode]:
		"""All parameter nodes in breadth-first order, or sorted by identifier."""
		parameters = [node for node in self._breadth_first() if isinstance(node, ParameterNode)]
		if sort:
			parameters.sort(key=lambda node: node.identifier)
		return parameters

	def get_numerical_parameters(self) -> list[ParameterNode]:
		return [node for node in self.get_parameters() if not node.domain.is_categorical]

	def get_parameter(self, identifier: str) -> ParameterNode:
		for node in self.get_parameters():
			if node.identifier == identifier:
				return node
		raise KeyError(identifier)

	def contains_parameters(self) -> bool:
		return any(isinstance(node, ParameterNode) for node in self._breadth_first())

	def identifiers_are_unique(self) -> bool:
		identifiers = [node.identifier for node in self.get_parameters()]
		return len(identifiers) == len(set(identifiers))

	def find_active_identifiers(self, values: Mapping[str, Any]) -> set[str]:
		"""
		Identifiers reachable from the root when OR nodes only follow their chosen branch.

		Args:
			values: Assignment of (at least) the OR node parameters

		Returns:
			Set of active parameter identifiers
		"""
		active = set()
		queue = deque([self.root])
		while queue:
			node = queue.popleft()
			if isinstance(node, ParameterNode):
				active.add(node.identifier)
			if isinstance(node, OrNode):
				child = node.try_get_child(values.get(node.identifier))
				if child is not None:
					queue.append(child)
			else:
				queue.extend(node.children)
		return active
