"""
Mini tournaments: the selection scheme of GGA generations.

The participants of a generation are split into balanced random subsets.
Every subset is one mini tournament evaluated on the same instances; the
best share of each tournament wins. All tournaments of a generation share
one priority queue, so the coordinator always starts the evaluation of the
genome with the lowest priority value next. With racing enabled, genomes
that can no longer win are cancelled as soon as results come in.

Usage:
	strategy = MiniTournamentGenerationEvaluationStrategy(evaluator, genomes, instances, generation, config, rng)
	# after stored results were replayed:
	strategy.become_working()
	pair = strategy.try_pop_evaluation()
	strategy.genome_instance_evaluation_finished(pair, result)
	gga_result = strategy.create_result()
"""

import heapq
import itertools
import math
import threading
from dataclasses import dataclass, field
from typing import Hashable, NamedTuple, Optional, Protocol, Sequence

from algotune.config import TunerConfiguration
from algotune.evaluation.genome_stats import GenomeStats, ImmutableGenomeStats, Instance
from algotune.evaluation.racing import RunEvaluator, check_racing_cancellation
from algotune.evaluation.results import RunResult
from algotune.genomes.genome import ImmutableGenome
from algotune.logger import TunerLogger
from algotune.randomizer import Randomizer

_log = TunerLogger("MiniTournament")


class GenomeInstancePair(NamedTuple):
	genome: ImmutableGenome
	instance: Instance


class GenomeTournamentKey(NamedTuple):
	genome: ImmutableGenome
	tournament_id: int


@dataclass(frozen=True)
class GenomeTournamentRank:
	"""Rank (1 = best) of a genome in one mini tournament."""
	rank: int
	tournament_id: int
	generation: int

	def to_dict(self) -> dict[str, int]:
		return {"rank": self.rank, "tournament_id": self.tournament_id, "generation": self.generation}


@dataclass
class MiniTournamentResult:
	tournament_id: int
	winner_stats: list[ImmutableGenomeStats]
	genome_to_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]]


@dataclass
class GgaResult:
	"""
	Outcome of a GGA generation.

	Attributes:
		competitive_parents: Winners of all mini tournaments, best first
		genome_to_ranks: Tournament ranks of every participating genome
		generation_best: Best winner of the generation
		generation_best_results: Run results of `generation_best`
	"""
	competitive_parents: list[ImmutableGenome]
	genome_to_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]]
	generation_best: ImmutableGenome
	generation_best_results: dict[Instance, RunResult] = field(default_factory=dict)


@dataclass
class TournamentWinnersWithRank:
	"""Winners of a generation and the ranks collected for all participants."""
	competitive_parents: list[ImmutableGenome]
	genome_to_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]]

	@classmethod
	def from_gga_result(cls, result: GgaResult) -> 'TournamentWinnersWithRank':
		return cls(list(result.competitive_parents), dict(result.genome_to_ranks))


class GenerationEvaluationStrategy(Protocol):
	"""Decides which evaluation runs next and turns finished runs into a result."""

	@property
	def is_generation_finished(self) -> bool:
		...

	def become_working(self) -> None:
		...

	def try_pop_evaluation(self) -> Optional[GenomeInstancePair]:
		...

	def genome_instance_evaluation_finished(self, evaluation: GenomeInstancePair, result: RunResult) -> None:
		...

	def requeue_evaluation(self, evaluation: GenomeInstancePair) -> None:
		...

	def is_cancelled_by_racing(self, genome: ImmutableGenome) -> bool:
		"""True if no part of the evaluation still needs results of `genome`."""
		...

	def create_result(self):
		...


class EvaluationPriorityQueue:
	"""
	Priority queue with updatable and removable keys.

	Lower priority values come first; equal priorities keep insertion order.
	Replaced heap entries stay in the heap and are skipped when they surface.
	"""

	def __init__(self):
		self._lock = threading.RLock()
		self._heap: list[tuple[float, int, Hashable]] = []
		self._entries: dict[Hashable, tuple[float, int]] = {}
		self._counter = itertools.count()

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def __contains__(self, key: Hashable) -> bool:
		with self._lock:
			return key in self._entries

	def enqueue(self, key: Hashable, priority: float) -> None:
		with self._lock:
			sequence = self._entries[key][1] if key in self._entries else next(self._counter)
			self._entries[key] = (priority, sequence)
			heapq.heappush(self._heap, (priority, sequence, key))

	def update_priority(self, key: Hashable, priority: float) -> None:
		with self._lock:
			if key not in self._entries:
				raise KeyError(f"{key} is not queued")
			self.enqueue(key, priority)

	def remove(self, key: Hashable) -> bool:
		with self._lock:
			return self._entries.pop(key, None) is not None

	def first(self) -> Optional[Hashable]:
		with self._lock:
			while self._heap:
				priority, sequence, key = self._heap[0]
				if self._entries.get(key) == (priority, sequence):
					return key
				heapq.heappop(self._heap)
			return None


class MiniTournamentManager:
	"""
	Bookkeeping of one mini tournament.

	Duplicate participants share one GenomeStats but keep separate places in
	the ranking. All instances start in the running state; the caller first
	replays stored results (finish) and requeues the rest before the queue
	is synchronized.

	Args:
		participants: Genomes of the tournament, duplicates allowed
		instances: Instances every participant is evaluated on
		tournament_id: Unique id within the run
		generation: Generation the tournament belongs to
		run_evaluator: Sorting, priorities and racing
		configuration: Supplies winner percentage and the racing switch
	"""

	def __init__(
		self,
		participants: Sequence[ImmutableGenome],
		instances: Sequence[Instance],
		tournament_id: int,
		generation: int,
		run_evaluator: RunEvaluator,
		configuration: TunerConfiguration,
	):
		self.participants = list(participants)
		if not self.participants:
			raise ValueError("A mini tournament needs at least one participant.")
		self.tournament_id = tournament_id
		self._generation = generation
		self._run_evaluator = run_evaluator
		self._enable_racing = configuration.enable_racing
		self.desired_number_of_winners = math.ceil(len(self.participants) * configuration.tournament_winner_percentage)
		self._lock = threading.RLock()
		self._genome_to_stats: dict[ImmutableGenome, GenomeStats] = {
			genome: GenomeStats(genome, (), instances) for genome in dict.fromkeys(self.participants)
		}
		self._queue: Optional[EvaluationPriorityQueue] = None

	def _key(self, genome: ImmutableGenome) -> GenomeTournamentKey:
		return GenomeTournamentKey(genome, self.tournament_id)

	@property
	def is_finished(self) -> bool:
		with self._lock:
			return not any(stats.has_open_or_running_instances for stats in self._genome_to_stats.values())

	def expanded_genome_stats(self) -> list[ImmutableGenomeStats]:
		"""One snapshot per participant, duplicates included."""
		with self._lock:
			return [self._genome_to_stats[genome].to_immutable() for genome in self.participants]

	def update_result(self, evaluation: GenomeInstancePair, result: RunResult) -> None:
		with self._lock:
			stats = self._genome_to_stats.get(evaluation.genome)
			if stats is None:
				return
			if not stats.finish_instance(evaluation.instance, result):
				_log.warning(
					f"Trying to finish instance {evaluation.instance} with result {result} in tournament "
					f"{self.tournament_id}, but it was not running."
				)
			if self._enable_racing:
				self._apply_racing()
			self._remove_or_update_in_queue(evaluation.genome)

	def _apply_racing(self) -> None:
		snapshots = self.expanded_genome_stats()
		cancellable = list(dict.fromkeys(
			self._run_evaluator.get_genomes_that_can_be_cancelled_by_racing(snapshots, self.desired_number_of_winners)
		))
		if not cancellable:
			return
		check_racing_cancellation(snapshots, cancellable, self.desired_number_of_winners)
		for genome in cancellable:
			if self._genome_to_stats[genome].update_cancelled_by_racing() and self._queue is not None:
				self._queue.remove(self._key(genome))

	def start_synchronizing_queue(self, queue: EvaluationPriorityQueue) -> None:
		"""Enqueue every genome with open instances into the shared queue."""
		with self._lock:
			self._queue = queue
			for genome, stats in self._genome_to_stats.items():
				if stats.has_open_instances:
					queue.enqueue(self._key(genome), self._priority(genome))

	def try_get_next_instance(self, key: GenomeTournamentKey) -> Optional[Instance]:
		"""Start the next open instance of the keyed genome and refresh its priority."""
		with self._lock:
			instance = self._genome_to_stats[key.genome].try_start_instance()
			self._remove_or_update_in_queue(key.genome)
			return instance

	def requeue_evaluation_if_relevant(self, evaluation: GenomeInstancePair) -> None:
		with self._lock:
			stats = self._genome_to_stats.get(evaluation.genome)
			if stats is None:
				return
			if stats.requeue_instance(evaluation.instance) and self._queue is not None:
				self._queue.enqueue(self._key(evaluation.genome), self._priority(evaluation.genome))

	def notify_evaluation_started(self, evaluation: GenomeInstancePair) -> None:
		"""Another tournament started this pair; mark it running here too."""
		with self._lock:
			stats = self._genome_to_stats.get(evaluation.genome)
			if stats is None:
				return
			stats.notify_instance_started(evaluation.instance)
			self._remove_or_update_in_queue(evaluation.genome)

	def is_cancelled_by_racing(self, genome: ImmutableGenome) -> Optional[bool]:
		"""None if `genome` does not take part in this tournament."""
		with self._lock:
			stats = self._genome_to_stats.get(genome)
			return None if stats is None else stats.is_cancelled_by_racing

	def create_result(self) -> MiniTournamentResult:
		with self._lock:
			if not self.is_finished:
				raise RuntimeError(
					f"Cannot create the result of mini tournament {self.tournament_id} before it is finished."
				)
			ordered = self._run_evaluator.sort(self.expanded_genome_stats())
			genome_to_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]] = {}
			for index, stats in enumerate(ordered):
				genome_to_ranks.setdefault(stats.genome, []).append(
					GenomeTournamentRank(index + 1, self.tournament_id, self._generation)
				)
			return MiniTournamentResult(self.tournament_id, ordered[:self.desired_number_of_winners], genome_to_ranks)

	def _priority(self, genome: ImmutableGenome) -> float:
		return self._run_evaluator.compute_evaluation_priority(self._genome_to_stats[genome].to_immutable())

	def _remove_or_update_in_queue(self, genome: ImmutableGenome) -> None:
		if self._queue is None:
			# stored results are still being replayed
			return
		key = self._key(genome)
		if not self._genome_to_stats[genome].has_open_instances:
			self._queue.remove(key)
		elif key in self._queue:
			self._queue.update_priority(key, self._priority(genome))


class MiniTournamentGenerationEvaluationStrategy:
	"""
	Evaluation of a GGA generation as a set of mini tournaments.

	Args:
		run_evaluator: Sorting, priorities and racing
		genomes: Participants of the generation
		instances: Instances of the generation
		generation: Generation index, determines the tournament ids
		configuration: Tournament size and winner percentage
		rng: Random handle for the tournament split
	"""

	def __init__(
		self,
		run_evaluator: RunEvaluator,
		genomes: Sequence[ImmutableGenome],
		instances: Sequence[Instance],
		generation: int,
		configuration: TunerConfiguration,
		rng: Randomizer,
	):
		self._run_evaluator = run_evaluator
		self._genomes = list(genomes)
		self._generation = generation
		first_id = math.ceil((configuration.population_size / 2) / configuration.max_mini_tournament_size) * generation
		subsets = rng.split_into_random_balanced_subsets(self._genomes, configuration.max_mini_tournament_size)
		self._managers = [
			MiniTournamentManager(subset, instances, first_id + offset, generation, run_evaluator, configuration)
			for offset, subset in enumerate(subsets)
		]
		self._managers_by_id = {manager.tournament_id: manager for manager in self._managers}
		self._queue = EvaluationPriorityQueue()
		_log.debug(f"Generation {generation}: {len(self._managers)} mini tournaments on {len(instances)} instances.")

	@property
	def managers(self) -> list[MiniTournamentManager]:
		return list(self._managers)

	@property
	def is_generation_finished(self) -> bool:
		return all(manager.is_finished for manager in self._managers)

	def become_working(self) -> None:
		for manager in self._managers:
			manager.start_synchronizing_queue(self._queue)

	def try_pop_evaluation(self) -> Optional[GenomeInstancePair]:
		while True:
			key = self._queue.first()
			if key is None:
				return None
			manager = self._managers_by_id.get(key.tournament_id)
			if manager is None:
				raise RuntimeError(f"Cannot find a mini tournament manager with id {key.tournament_id}.")
			instance = manager.try_get_next_instance(key)
			if instance is None:
				continue
			evaluation = GenomeInstancePair(key.genome, instance)
			for other in self._managers:
				if other is not manager:
					other.notify_evaluation_started(evaluation)
			return evaluation

	def genome_instance_evaluation_finished(self, evaluation: GenomeInstancePair, result: RunResult) -> None:
		for manager in self._managers:
			manager.update_result(evaluation, result)

	def requeue_evaluation(self, evaluation: GenomeInstancePair) -> None:
		for manager in self._managers:
			manager.requeue_evaluation_if_relevant(evaluation)

	def is_cancelled_by_racing(self, genome: ImmutableGenome) -> bool:
		verdicts = [manager.is_cancelled_by_racing(genome) for manager in self._managers]
		verdicts = [verdict for verdict in verdicts if verdict is not None]
		return bool(verdicts) and all(verdicts)

	def create_result(self) -> GgaResult:
		if not self.is_generation_finished:
			raise RuntimeError(f"Cannot create the GGA result of generation {self._generation} before it is finished.")
		genome_to_ranks: dict[ImmutableGenome, list[GenomeTournamentRank]] = {
			genome: [] for genome in dict.fromkeys(self._genomes)
		}
		winner_stats = []
		for manager in self._managers:
			result = manager.create_result()
			for genome, ranks in result.genome_to_ranks.items():
				genome_to_ranks[genome].extend(ranks)
			winner_stats.extend(result.winner_stats)

		# all tournaments of a generation run on the same instances
		ordered_winners = self._run_evaluator.sort(winner_stats)
		best = ordered_winners[0]
		return GgaResult(
			[stats.genome for stats in ordered_winners],
			genome_to_ranks,
			best.genome,
			dict(best.finished_instances),
		)
