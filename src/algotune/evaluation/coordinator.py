"""
Concurrent evaluation of generations.

The coordinator owns a bounded ThreadPoolExecutor for target algorithm runs
and one scheduling thread. Requests (a GGA generation or a full sort) are
queued and handled one after the other. For each request the scheduler
first replays results from the ResultStorage, then keeps the pool busy with
the evaluations the request's strategy pops, feeds finished runs back and
resolves the request's future once the strategy reports completion.

Guarantees:
	- at most one running evaluation per (genome, instance) pair
	- stored results are never recomputed
	- runs of genomes removed by racing are cancelled through their token
	- a run that raises fails the request's future with EvaluationFault

Usage:
	coordinator = EvaluationCoordinator(solver, SortByPenalizedRuntime(10, 30.0), config, ResultStorage(), rng)
	future = coordinator.submit_generation(genomes, instances, generation=0)
	gga_result = future.result()
	coordinator.shutdown()
"""

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from algotune.config import TunerConfiguration
from algotune.errors import EvaluationFault
from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.racing import RunEvaluator
from algotune.evaluation.results import RunResult
from algotune.evaluation.sorting import SortingGenerationEvaluationStrategy, SortResult
from algotune.evaluation.storage import ResultStorage
from algotune.evaluation.target_algorithm import CancellationToken, TargetAlgorithm
from algotune.evaluation.tournament import (
	GenerationEvaluationStrategy,
	GenomeInstancePair,
	GgaResult,
	MiniTournamentGenerationEvaluationStrategy,
)
from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.logger import TunerLogger
from algotune.randomizer import Randomizer


@dataclass
class _Request:
	description: str
	genomes: list[ImmutableGenome]
	instances: list[Instance]
	create_strategy: Callable[[], GenerationEvaluationStrategy]
	future: Future


@dataclass
class _Completion:
	evaluation: GenomeInstancePair
	token: CancellationToken
	future: Future


class _RequestAborted(Exception):
	pass


def _immutable(genomes: Sequence[Genome | ImmutableGenome]) -> list[ImmutableGenome]:
	return [genome if isinstance(genome, ImmutableGenome) else ImmutableGenome(genome) for genome in genomes]


class EvaluationCoordinator:
	"""
	Schedules target algorithm runs for generation evaluations.

	Args:
		target_algorithm: Runs one genome on one instance
		run_evaluator: Sorting, priorities and racing
		configuration: Parallelism, tournament size, racing switch
		storage: Result storage shared with the strategies
		rng: Random handle for the tournament split
		logger: Component logger (default: TunerLogger("EvaluationCoordinator"))
	"""

	def __init__(
		self,
		target_algorithm: TargetAlgorithm,
		run_evaluator: RunEvaluator,
		configuration: TunerConfiguration,
		storage: Optional[ResultStorage] = None,
		rng: Optional[Randomizer] = None,
		logger: Optional[TunerLogger] = None,
	):
		self._target_algorithm = target_algorithm
		self._run_evaluator = run_evaluator
		self._configuration = configuration
		self.storage = storage if storage is not None else ResultStorage()
		self._rng = rng or Randomizer(configuration.random_seed)
		self._log = logger or TunerLogger("EvaluationCoordinator")

		self._executor = ThreadPoolExecutor(
			max_workers=configuration.maximum_parallel_evaluations,
			thread_name_prefix="algotune-evaluation",
		)
		self._requests: queue.Queue[Optional[_Request]] = queue.Queue()
		self._completions: queue.Queue[_Completion] = queue.Queue()
		self._running: dict[GenomeInstancePair, CancellationToken] = {}
		self._running_lock = threading.Lock()
		self._closing = threading.Event()
		self._scheduler = threading.Thread(target=self._schedule_loop, name="algotune-scheduler", daemon=True)
		self._scheduler.start()

	# =========================================================================
	# Public API
	# =========================================================================

	def submit_generation(
		self,
		genomes: Sequence[Genome | ImmutableGenome],
		instances: Sequence[Instance],
		generation: int,
	) -> 'Future[GgaResult]':
		"""Evaluate a GGA generation as mini tournaments."""
		participants = _immutable(genomes)
		instances = list(instances)
		return self._submit(_Request(
			f"generation {generation}",
			participants,
			instances,
			lambda: MiniTournamentGenerationEvaluationStrategy(
				self._run_evaluator, participants, instances, generation, self._configuration, self._rng
			),
			Future(),
		))

	def submit_sort(self, genomes: Sequence[Genome | ImmutableGenome], instances: Sequence[Instance]) -> 'Future[SortResult]':
		"""Evaluate every genome on every instance and sort them."""
		participants = _immutable(genomes)
		instances = list(instances)
		return self._submit(_Request(
			f"sort of {len(participants)} genomes",
			participants,
			instances,
			lambda: SortingGenerationEvaluationStrategy(self._run_evaluator, participants, instances),
			Future(),
		))

	def shutdown(self, wait: bool = True) -> None:
		"""Cancel running evaluations, fail pending requests and stop the pool."""
		if self._closing.is_set():
			return
		self._closing.set()
		self._cancel_running()
		self._requests.put(None)
		if wait:
			self._scheduler.join()
		self._executor.shutdown(wait=wait)

	def __enter__(self) -> 'EvaluationCoordinator':
		return self

	def __exit__(self, *exc) -> None:
		self.shutdown()

	# =========================================================================
	# Scheduling
	# =========================================================================

	def _submit(self, request: _Request) -> Future:
		if self._closing.is_set():
			raise RuntimeError("Cannot submit evaluations after shutdown.")
		if not request.genomes or not request.instances:
			raise ValueError(f"The {request.description} needs at least one genome and one instance.")
		self._requests.put(request)
		return request.future

	def _schedule_loop(self) -> None:
		while True:
			request = self._requests.get()
			if request is None or self._closing.is_set():
				self._reject(request)
				self._drain_requests()
				return
			if not request.future.set_running_or_notify_cancel():
				continue
			try:
				result = self._evaluate(request)
			except _RequestAborted as error:
				request.future.set_exception(error.__cause__ or RuntimeError(str(error)))
			except Exception as error:
				self._cancel_running()
				self._wait_for_running()
				request.future.set_exception(error)
			else:
				request.future.set_result(result)

	def _drain_requests(self) -> None:
		while True:
			try:
				request = self._requests.get_nowait()
			except queue.Empty:
				return
			self._reject(request)

	@staticmethod
	def _reject(request: Optional[_Request]) -> None:
		if request is not None and request.future.set_running_or_notify_cancel():
			request.future.set_exception(RuntimeError("The evaluation coordinator was shut down."))

	def _evaluate(self, request: _Request):
		strategy = request.create_strategy()
		self._log.debug(f"Evaluating {request.description} on {len(request.instances)} instances.")
		self._replay_stored_results(strategy, request)

		if not strategy.is_generation_finished:
			strategy.become_working()
			self._fill_pool(strategy)
			while self._running or not strategy.is_generation_finished:
				if not self._running:
					raise RuntimeError(
						f"The evaluation of {request.description} is not finished, but nothing is running or queued."
					)
				self._handle_completion(strategy, self._completions.get())
				if self._closing.is_set():
					self._abort(RuntimeError("The evaluation coordinator was shut down."))
				if strategy.is_generation_finished:
					# only runs of genomes removed by racing can still be running
					self._cancel_running()
				else:
					self._cancel_racing_losers(strategy)
					self._fill_pool(strategy)

		configurations, evaluations = self.storage.evaluation_statistic()
		self._log.debug(f"Finished {request.description}. Stored results: {evaluations} runs of {configurations} configurations.")
		return strategy.create_result()

	def _replay_stored_results(self, strategy: GenerationEvaluationStrategy, request: _Request) -> None:
		for genome in dict.fromkeys(request.genomes):
			results = self.storage.all_results(genome)
			for instance in request.instances:
				evaluation = GenomeInstancePair(genome, instance)
				if instance in results:
					strategy.genome_instance_evaluation_finished(evaluation, results[instance])
				else:
					strategy.requeue_evaluation(evaluation)

	def _fill_pool(self, strategy: GenerationEvaluationStrategy) -> None:
		while len(self._running) < self._configuration.maximum_parallel_evaluations:
			evaluation = strategy.try_pop_evaluation()
			if evaluation is None:
				return
			if evaluation in self._running:
				self._log.info(f"Not starting {evaluation.genome} on {evaluation.instance} a second time, it is already running.")
				continue
			stored = self.storage.query(evaluation.genome, evaluation.instance)
			if stored is not None:
				strategy.genome_instance_evaluation_finished(evaluation, stored)
				continue
			token = CancellationToken()
			with self._running_lock:
				self._running[evaluation] = token
			self._log.trace(f"Starting {evaluation.genome} on {evaluation.instance}.")
			future = self._executor.submit(self._run, evaluation, token)
			future.add_done_callback(lambda done, e=evaluation, t=token: self._completions.put(_Completion(e, t, done)))

	def _run(self, evaluation: GenomeInstancePair, token: CancellationToken) -> Optional[RunResult]:
		result = self._target_algorithm.run(evaluation.genome.create_mutable_genome(), evaluation.instance, token)
		if token.is_cancelled:
			return None
		return result

	def _handle_completion(self, strategy: GenerationEvaluationStrategy, completion: _Completion) -> None:
		evaluation = completion.evaluation
		with self._running_lock:
			self._running.pop(evaluation, None)
		error = completion.future.exception()
		if error is not None:
			fault = EvaluationFault(f"Evaluation of {evaluation.genome} on {evaluation.instance} failed: {error}")
			fault.__cause__ = error
			self._log.error(str(fault))
			self._abort(fault)
		result = completion.future.result()
		if result is None:
			self._log.trace(f"Discarding cancelled run of {evaluation.genome} on {evaluation.instance}.")
			return
		self.storage.store(evaluation.genome, evaluation.instance, result)
		strategy.genome_instance_evaluation_finished(evaluation, result)

	def _cancel_racing_losers(self, strategy: GenerationEvaluationStrategy) -> None:
		with self._running_lock:
			running = list(self._running.items())
		for evaluation, token in running:
			if not token.is_cancelled and strategy.is_cancelled_by_racing(evaluation.genome):
				self._log.debug(f"Cancelling run of {evaluation.genome} on {evaluation.instance} (removed by racing).")
				token.cancel()

	def _cancel_running(self) -> None:
		with self._running_lock:
			for token in self._running.values():
				token.cancel()

	def _wait_for_running(self) -> None:
		while self._running:
			completion = self._completions.get()
			with self._running_lock:
				self._running.pop(completion.evaluation, None)

	def _abort(self, error: BaseException) -> None:
		self._cancel_running()
		self._wait_for_running()
		raise _RequestAborted(str(error)) from error
