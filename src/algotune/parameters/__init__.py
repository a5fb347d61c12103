"""Parameter domains and the AND/OR parameter tree."""

from algotune.parameters.domains import (
	Domain,
	CategoricalDomain,
	NumericalDomain,
	IntegerDomain,
	ContinuousDomain,
	LogDomain,
	DiscreteLogDomain,
)
from algotune.parameters.tree import (
	TreeNode,
	ParameterNode,
	AndNode,
	ValueNode,
	OrNode,
	ParameterTree,
)

__all__ = [
	'Domain', 'CategoricalDomain', 'NumericalDomain', 'IntegerDomain',
	'ContinuousDomain', 'LogDomain', 'DiscreteLogDomain',
	'TreeNode', 'ParameterNode', 'AndNode', 'ValueNode', 'OrNode', 'ParameterTree',
]
