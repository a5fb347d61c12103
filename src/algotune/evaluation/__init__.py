"""
Evaluation of genomes on instances: results, racing, mini tournaments and
the concurrent coordinator.
"""

from algotune.evaluation.results import (
	RunResult,
	RuntimeResult,
	ContinuousResult,
	result_from_dict,
)
from algotune.evaluation.genome_stats import (
	GenomeStats,
	ImmutableGenomeStats,
	create_immutable_genome_stats,
)
from algotune.evaluation.racing import (
	RunEvaluator,
	RacingRunEvaluatorBase,
	SortByPenalizedRuntime,
	SortByUnpenalizedRuntime,
	SortByValue,
	check_racing_cancellation,
	compute_evaluation_priority,
	create_cancelled_result,
)
from algotune.evaluation.storage import ResultStorage
from algotune.evaluation.target_algorithm import CancellationToken, TargetAlgorithm
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.evaluation.tournament import (
	EvaluationPriorityQueue,
	GenomeInstancePair,
	GenomeTournamentKey,
	GenomeTournamentRank,
	GgaResult,
	MiniTournamentGenerationEvaluationStrategy,
	MiniTournamentManager,
	MiniTournamentResult,
	TournamentWinnersWithRank,
)
from algotune.evaluation.sorting import SortingGenerationEvaluationStrategy, SortResult
from algotune.evaluation.coordinator import EvaluationCoordinator

__all__ = [
	# Results
	'RunResult',
	'RuntimeResult',
	'ContinuousResult',
	'result_from_dict',
	'create_cancelled_result',
	# Statistics
	'GenomeStats',
	'ImmutableGenomeStats',
	'create_immutable_genome_stats',
	# Run evaluators
	'RunEvaluator',
	'RacingRunEvaluatorBase',
	'SortByPenalizedRuntime',
	'SortByUnpenalizedRuntime',
	'SortByValue',
	'check_racing_cancellation',
	'compute_evaluation_priority',
	# Storage and target algorithm
	'ResultStorage',
	'CancellationToken',
	'TargetAlgorithm',
	'IncumbentGenomeWrapper',
	# Tournaments
	'EvaluationPriorityQueue',
	'GenomeInstancePair',
	'GenomeTournamentKey',
	'GenomeTournamentRank',
	'GgaResult',
	'MiniTournamentGenerationEvaluationStrategy',
	'MiniTournamentManager',
	'MiniTournamentResult',
	'TournamentWinnersWithRank',
	'SortingGenerationEvaluationStrategy',
	'SortResult',
	# Coordinator
	'EvaluationCoordinator',
]
