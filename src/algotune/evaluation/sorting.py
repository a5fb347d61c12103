"""
Full evaluation of a genome list followed by a global sort.

Used by the continuous phases, which need a total order over all their
points. Every genome runs on every instance; racing never applies.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from algotune.evaluation.genome_stats import GenomeStats, Instance
from algotune.evaluation.racing import RunEvaluator
from algotune.evaluation.results import RunResult
from algotune.evaluation.tournament import GenomeInstancePair
from algotune.genomes.genome import ImmutableGenome


@dataclass
class SortResult:
	"""Input genomes, duplicates included, best first."""
	ranking: list[ImmutableGenome]


class SortingGenerationEvaluationStrategy:
	"""
	Args:
		run_evaluator: Sorts the complete statistics
		genomes: Genomes to rank, duplicates allowed
		instances: Instances every genome is evaluated on
	"""

	def __init__(self, run_evaluator: RunEvaluator, genomes: Sequence[ImmutableGenome], instances: Sequence[Instance]):
		self._run_evaluator = run_evaluator
		self._genomes = list(genomes)
		self._genome_to_stats = {genome: GenomeStats(genome, (), instances) for genome in dict.fromkeys(self._genomes)}
		self._has_started_working = False

	@property
	def is_generation_finished(self) -> bool:
		return not any(stats.has_open_or_running_instances for stats in self._genome_to_stats.values())

	def become_working(self) -> None:
		self._has_started_working = True

	def try_pop_evaluation(self) -> Optional[GenomeInstancePair]:
		if not self._has_started_working:
			return None
		for stats in self._genome_to_stats.values():
			instance = stats.try_start_instance()
			if instance is not None:
				return GenomeInstancePair(stats.genome, instance)
		return None

	def genome_instance_evaluation_finished(self, evaluation: GenomeInstancePair, result: RunResult) -> None:
		self._genome_to_stats[evaluation.genome].finish_instance(evaluation.instance, result)

	def requeue_evaluation(self, evaluation: GenomeInstancePair) -> None:
		self._genome_to_stats[evaluation.genome].requeue_instance(evaluation.instance)

	def is_cancelled_by_racing(self, genome: ImmutableGenome) -> bool:
		return False

	def create_result(self) -> SortResult:
		if not self.is_generation_finished:
			raise RuntimeError("Cannot create the sort result before every genome was evaluated on every instance.")
		snapshots = [self._genome_to_stats[genome].to_immutable() for genome in self._genomes]
		return SortResult([stats.genome for stats in self._run_evaluator.sort(snapshots)])
