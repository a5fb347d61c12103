"""algotune - Population-based hybrid algorithm tuning."""

from algotune.logger import Logger, TunerLogger
from algotune.progress import ProgressTracker, ProgressStats
from algotune.errors import (
	PreconditionViolation,
	ConfigurationError,
	RepairExhaustedError,
	EvaluationFault,
	RacingInvariantViolation,
)
from algotune.config import (
	ContinuousOptimizationMethod,
	TunerConfiguration,
	CmaEsStrategyConfiguration,
	DifferentialEvolutionStrategyConfiguration,
)
from algotune.randomizer import Randomizer
from algotune.parameters import (
	CategoricalDomain,
	IntegerDomain,
	ContinuousDomain,
	LogDomain,
	DiscreteLogDomain,
	AndNode,
	OrNode,
	ValueNode,
	ParameterNode,
	ParameterTree,
)
from algotune.genomes import Genome, ImmutableGenome, GenomeBuilder, Population
from algotune.evaluation import (
	RuntimeResult,
	ContinuousResult,
	SortByPenalizedRuntime,
	SortByUnpenalizedRuntime,
	SortByValue,
	CancellationToken,
	TargetAlgorithm,
	IncumbentGenomeWrapper,
	EvaluationCoordinator,
)
from algotune.strategies import GeneticEngineering, NoGeneticEngineering
from algotune.tuner import AlgorithmTuner, InstanceSelector, TunerStatus

__all__ = [
	'Logger', 'TunerLogger',
	'ProgressTracker', 'ProgressStats',
	'PreconditionViolation', 'ConfigurationError', 'RepairExhaustedError', 'EvaluationFault', 'RacingInvariantViolation',
	'ContinuousOptimizationMethod', 'TunerConfiguration',
	'CmaEsStrategyConfiguration', 'DifferentialEvolutionStrategyConfiguration',
	'Randomizer',
	'CategoricalDomain', 'IntegerDomain', 'ContinuousDomain', 'LogDomain', 'DiscreteLogDomain',
	'AndNode', 'OrNode', 'ValueNode', 'ParameterNode', 'ParameterTree',
	'Genome', 'ImmutableGenome', 'GenomeBuilder', 'Population',
	'RuntimeResult', 'ContinuousResult',
	'SortByPenalizedRuntime', 'SortByUnpenalizedRuntime', 'SortByValue',
	'CancellationToken', 'TargetAlgorithm', 'IncumbentGenomeWrapper', 'EvaluationCoordinator',
	'GeneticEngineering', 'NoGeneticEngineering',
	'AlgorithmTuner', 'InstanceSelector', 'TunerStatus',
]
