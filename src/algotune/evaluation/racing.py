"""
Run evaluators: ranking of mini tournament participants and racing.

A run evaluator sorts genome statistics best first, computes the scheduling
priority of a genome (lower starts earlier) and names the genomes that can
no longer reach the winner positions of their mini tournament.

Usage:
	evaluator = SortByPenalizedRuntime(factor_par=10, cpu_timeout=30.0)
	ranking = evaluator.sort(snapshots)
	losers = evaluator.get_genomes_that_can_be_cancelled_by_racing(snapshots, number_of_winners=2)
"""

import math
import sys
from abc import ABC, abstractmethod
from typing import Protocol, Sequence, runtime_checkable

from algotune.errors import RacingInvariantViolation
from algotune.evaluation.genome_stats import ImmutableGenomeStats
from algotune.evaluation.results import ContinuousResult, RunResult, RuntimeResult
from algotune.genomes.genome import ImmutableGenome

# Priority of genomes that racing removed; they are never scheduled again.
CANCELLED_BY_RACING_PRIORITY = 1000.0


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class RunEvaluator(Protocol):
	"""Ranking and racing contract used by the evaluation coordinator."""

	def sort(self, genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
		"""Sort genome statistics, best first."""
		...

	def compute_evaluation_priority(self, genome_stats: ImmutableGenomeStats) -> float:
		"""Scheduling priority; the lower, the earlier the genome is evaluated."""
		...

	def get_genomes_that_can_be_cancelled_by_racing(
		self,
		genome_stats: Sequence[ImmutableGenomeStats],
		number_of_winners: int,
	) -> list[ImmutableGenome]:
		"""Genomes that cannot be among the best `number_of_winners` anymore."""
		...


# =============================================================================
# Shared helpers
# =============================================================================

def compute_evaluation_priority(genome_stats: ImmutableGenomeStats, cpu_timeout: float) -> float:
	"""
	Default priority: 100 * cancelled rate + 10 * running rate + runtime rate.

	Genomes with many timeouts, many running instances or a large runtime
	budget already spent are scheduled late. Genomes cancelled by racing get
	CANCELLED_BY_RACING_PRIORITY.
	"""
	if genome_stats.is_cancelled_by_racing:
		return CANCELLED_BY_RACING_PRIORITY
	total = genome_stats.total_instance_count
	cancelled_count = sum(1 for result in genome_stats.finished_instances.values() if result.is_cancelled)
	cancelled_rate = cancelled_count / total
	running_rate = len(genome_stats.running_instances) / total
	runtime_rate = 0.0 if math.isinf(cpu_timeout) else genome_stats.runtime_of_finished_instances / (total * cpu_timeout)
	for name, rate in (("cancelled", cancelled_rate), ("running", running_rate), ("runtime", runtime_rate)):
		if not 0 <= rate <= 1:
			raise ValueError(f"The {name} instance rate must be in [0, 1], but was {rate}.")
	return 100 * cancelled_rate + 10 * running_rate + runtime_rate


def check_racing_cancellation(
	genome_stats: Sequence[ImmutableGenomeStats],
	cancellable: Sequence[ImmutableGenome],
	number_of_winners: int,
) -> None:
	"""
	Raise RacingInvariantViolation if cancelling `cancellable` would leave fewer
	than `number_of_winners` genomes in the race.
	"""
	cancellable = set(cancellable)
	cancelled = sum(1 for stats in genome_stats if stats.is_cancelled_by_racing or stats.genome in cancellable)
	participants = len(genome_stats)
	if cancelled > participants - number_of_winners:
		raise RacingInvariantViolation(cancelled, participants, number_of_winners)


def _racing_candidates(genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
	return [stats for stats in genome_stats if not stats.is_cancelled_by_racing and stats.has_open_or_running_instances]


def _racing_incumbent(evaluator: RunEvaluator, genome_stats: Sequence[ImmutableGenomeStats], number_of_winners: int) -> ImmutableGenomeStats:
	if not 1 <= number_of_winners <= len(genome_stats):
		raise ValueError(f"Number of winners must be in [1, {len(genome_stats)}], but was {number_of_winners}.")
	return evaluator.sort(genome_stats)[number_of_winners - 1]


# =============================================================================
# Evaluators
# =============================================================================

class RacingRunEvaluatorBase(ABC):
	"""
	Run evaluator with generic racing.

	A candidate is cancelled if even its best possible completion ranks
	behind the worst possible completion of the genome currently at the last
	winner position. Subclasses provide the ordering and the two extreme
	results.

	Args:
		cpu_timeout: Seconds per run, used for the runtime rate of the priority
	"""

	def __init__(self, cpu_timeout: float):
		if cpu_timeout <= 0:
			raise ValueError(f"CPU timeout must be positive, but was {cpu_timeout}.")
		self.cpu_timeout = cpu_timeout

	@property
	@abstractmethod
	def best_possible_result(self) -> RunResult:
		...

	@property
	@abstractmethod
	def worst_possible_result(self) -> RunResult:
		...

	@abstractmethod
	def sort(self, genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
		...

	def compute_evaluation_priority(self, genome_stats: ImmutableGenomeStats) -> float:
		return compute_evaluation_priority(genome_stats, self.cpu_timeout)

	def get_genomes_that_can_be_cancelled_by_racing(
		self,
		genome_stats: Sequence[ImmutableGenomeStats],
		number_of_winners: int,
	) -> list[ImmutableGenome]:
		incumbent = _racing_incumbent(self, genome_stats, number_of_winners)
		extended = [self._extend(incumbent, self.worst_possible_result)]
		extended.extend(self._extend(stats, self.best_possible_result) for stats in _racing_candidates(genome_stats))

		cancellable = []
		for stats in reversed(self.sort(extended)):
			if stats.genome == incumbent.genome:
				break
			cancellable.append(stats.genome)
		return cancellable

	@staticmethod
	def _extend(genome_stats: ImmutableGenomeStats, result: RunResult) -> ImmutableGenomeStats:
		"""Snapshot with every unfinished instance replaced by `result`."""
		results = list(genome_stats.finished_instances.values())
		results.extend([result] * (genome_stats.total_instance_count - len(results)))
		placeholders = {("__placeholder__", index): value for index, value in enumerate(results)}
		return ImmutableGenomeStats(genome_stats.genome, finished_instances=placeholders)


class SortByPenalizedRuntime:
	"""
	Penalized average runtime (PARk): cancelled runs count `factor_par` times
	their runtime. Unfinished instances are assumed to time out.

	Args:
		factor_par: Penalization factor k (>= 1)
		cpu_timeout: Seconds per run
	"""

	def __init__(self, factor_par: int, cpu_timeout: float):
		if factor_par < 1:
			raise ValueError(f"Penalization factor must be at least 1, but was {factor_par}.")
		if cpu_timeout <= 0:
			raise ValueError(f"CPU timeout must be positive, but was {cpu_timeout}.")
		self.factor_par = factor_par
		self.cpu_timeout = cpu_timeout

	def get_metric_representation(self, result: RunResult) -> float:
		factor = self.factor_par if result.is_cancelled else 1
		return factor * result.runtime

	def sort(self, genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
		return sorted(genome_stats, key=lambda stats: self._upper_bound(stats) / stats.total_instance_count)

	def compute_evaluation_priority(self, genome_stats: ImmutableGenomeStats) -> float:
		return compute_evaluation_priority(genome_stats, self.cpu_timeout)

	def get_genomes_that_can_be_cancelled_by_racing(
		self,
		genome_stats: Sequence[ImmutableGenomeStats],
		number_of_winners: int,
	) -> list[ImmutableGenome]:
		incumbent_bound = self._upper_bound(_racing_incumbent(self, genome_stats, number_of_winners))
		return [
			stats.genome
			for stats in _racing_candidates(genome_stats)
			if self._penalized_runtime_of_finished(stats) > incumbent_bound
		]

	def _penalized_runtime_of_finished(self, genome_stats: ImmutableGenomeStats) -> float:
		return sum(self.get_metric_representation(result) for result in genome_stats.finished_instances.values())

	def _upper_bound(self, genome_stats: ImmutableGenomeStats) -> float:
		unfinished = genome_stats.total_instance_count - len(genome_stats.finished_instances)
		if unfinished == 0:
			return self._penalized_runtime_of_finished(genome_stats)
		return self._penalized_runtime_of_finished(genome_stats) + unfinished * self.cpu_timeout * self.factor_par


class SortByUnpenalizedRuntime:
	"""
	More uncancelled runs first, then lower average runtime.

	Args:
		cpu_timeout: Seconds per run
	"""

	def __init__(self, cpu_timeout: float):
		if cpu_timeout <= 0:
			raise ValueError(f"CPU timeout must be positive, but was {cpu_timeout}.")
		self.cpu_timeout = cpu_timeout

	@staticmethod
	def _uncancelled_count(genome_stats: ImmutableGenomeStats) -> int:
		return sum(1 for result in genome_stats.finished_instances.values() if not result.is_cancelled)

	@staticmethod
	def _average_runtime(genome_stats: ImmutableGenomeStats) -> float:
		results = genome_stats.finished_instances.values()
		if not results:
			return math.inf
		return sum(result.runtime for result in results) / len(results)

	def sort(self, genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
		return sorted(genome_stats, key=lambda stats: (-self._uncancelled_count(stats), self._average_runtime(stats)))

	def compute_evaluation_priority(self, genome_stats: ImmutableGenomeStats) -> float:
		return compute_evaluation_priority(genome_stats, self.cpu_timeout)

	def get_genomes_that_can_be_cancelled_by_racing(
		self,
		genome_stats: Sequence[ImmutableGenomeStats],
		number_of_winners: int,
	) -> list[ImmutableGenome]:
		incumbent = _racing_incumbent(self, genome_stats, number_of_winners)
		incumbent_uncancelled = self._uncancelled_count(incumbent)
		unfinished = len(incumbent.open_instances) + len(incumbent.running_instances)
		incumbent_maximum_runtime = incumbent.runtime_of_finished_instances
		if unfinished:
			incumbent_maximum_runtime += unfinished * self.cpu_timeout

		cancellable = []
		for stats in _racing_candidates(genome_stats):
			maximum_uncancelled = self._uncancelled_count(stats) + len(stats.open_instances) + len(stats.running_instances)
			if maximum_uncancelled < incumbent_uncancelled:
				cancellable.append(stats.genome)
			elif maximum_uncancelled == incumbent_uncancelled and stats.runtime_of_finished_instances > incumbent_maximum_runtime:
				cancellable.append(stats.genome)
		return cancellable


class SortByValue(RacingRunEvaluatorBase):
	"""
	Sort by the average objective value of valid results.

	Genomes with more valid results rank first; cancelled, NaN and infinite
	values are invalid.

	Args:
		ascending: True if lower values are better
		cpu_timeout: Seconds per run
	"""

	def __init__(self, ascending: bool = True, cpu_timeout: float = math.inf):
		super().__init__(cpu_timeout)
		self.ascending = ascending

	@property
	def best_possible_result(self) -> RunResult:
		value = -sys.float_info.max if self.ascending else sys.float_info.max
		return ContinuousResult(0.0, value=value)

	@property
	def worst_possible_result(self) -> RunResult:
		runtime = 0.0 if math.isinf(self.cpu_timeout) else self.cpu_timeout
		return ContinuousResult.create_cancelled_result(runtime)

	@staticmethod
	def _valid_values(genome_stats: ImmutableGenomeStats) -> list[float]:
		return [
			result.value
			for result in genome_stats.finished_instances.values()
			if isinstance(result, ContinuousResult) and result.is_valid
		]

	def sort(self, genome_stats: Sequence[ImmutableGenomeStats]) -> list[ImmutableGenomeStats]:
		sign = 1 if self.ascending else -1

		def key(stats: ImmutableGenomeStats):
			values = self._valid_values(stats)
			average = sum(values) / len(values) if values else 0.0
			return -len(values), sign * average

		return sorted(genome_stats, key=key)


def create_cancelled_result(runtime: float) -> RuntimeResult:
	"""Cancelled runtime result, e.g. for a run that hit the CPU timeout."""
	return RuntimeResult.create_cancelled_result(runtime)
