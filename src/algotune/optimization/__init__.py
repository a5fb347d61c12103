"""Continuous optimizers working on search points."""

from algotune.optimization.search_point import SearchPoint, BoundedSearchPoint, SearchPointSorter
from algotune.optimization.termination import (
	TerminationCriterion,
	ConditionCov,
	NoEffectAxis,
	NoEffectCoord,
	TolUpSigma,
	MaxIterations,
)
from algotune.optimization.cmaes import CmaEs, CmaEsConfiguration, CmaEsElements, CmaEsStatus
from algotune.optimization.differential_evolution import (
	DifferentialEvolution,
	DifferentialEvolutionConfiguration,
	DifferentialEvolutionStatus,
)

__all__ = [
	'SearchPoint', 'BoundedSearchPoint', 'SearchPointSorter',
	'TerminationCriterion', 'ConditionCov', 'NoEffectAxis', 'NoEffectCoord', 'TolUpSigma', 'MaxIterations',
	'CmaEs', 'CmaEsConfiguration', 'CmaEsElements', 'CmaEsStatus',
	'DifferentialEvolution', 'DifferentialEvolutionConfiguration', 'DifferentialEvolutionStatus',
]
