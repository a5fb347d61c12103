"""
Population update strategies: the GGA phase and the continuous phases.
"""

from algotune.strategies.base import PopulationUpdateStrategy, find_strategy_index
from algotune.strategies.search_points import (
	GenomeSearchPointConverter,
	ContinuizedGenomeSearchPoint,
	PartialGenomeSearchPoint,
	GenomeSearchPoint,
)
from algotune.strategies.continuous import (
	ContinuousOptimizationStrategyBase,
	ContinuousOptimizationStrategyStatus,
	GenomeAssistedSorter,
	GenomeSearchPointSorter,
	RepairedGenomeSearchPointSorter,
)
from algotune.strategies.covariance_matrix_adaptation import (
	CovarianceMatrixAdaptationStrategyBase,
	GlobalCovarianceMatrixAdaptationStrategy,
	LocalCovarianceMatrixAdaptationStrategy,
	create_covariance_matrix_adaptation_strategy,
)
from algotune.strategies.differential_evolution import (
	DifferentialEvolutionStrategy,
	GlobalDifferentialEvolutionInformationFlow,
	LocalDifferentialEvolutionInformationFlow,
)
from algotune.strategies.genetic_engineering import GeneticEngineering, NoGeneticEngineering
from algotune.strategies.gga import GgaStatus, GgaStrategy
from algotune.strategies.factory import StrategyFactory

__all__ = [
	# Interface
	'PopulationUpdateStrategy',
	'find_strategy_index',
	# Search points
	'GenomeSearchPointConverter',
	'ContinuizedGenomeSearchPoint',
	'PartialGenomeSearchPoint',
	'GenomeSearchPoint',
	# Continuous phases
	'ContinuousOptimizationStrategyBase',
	'ContinuousOptimizationStrategyStatus',
	'GenomeAssistedSorter',
	'GenomeSearchPointSorter',
	'RepairedGenomeSearchPointSorter',
	'CovarianceMatrixAdaptationStrategyBase',
	'GlobalCovarianceMatrixAdaptationStrategy',
	'LocalCovarianceMatrixAdaptationStrategy',
	'create_covariance_matrix_adaptation_strategy',
	'DifferentialEvolutionStrategy',
	'GlobalDifferentialEvolutionInformationFlow',
	'LocalDifferentialEvolutionInformationFlow',
	# GGA
	'GeneticEngineering',
	'NoGeneticEngineering',
	'GgaStatus',
	'GgaStrategy',
	'StrategyFactory',
]
