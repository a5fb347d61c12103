"""
Per-genome bookkeeping of a mini tournament.

Each instance of a genome is in exactly one of the states open, running,
finished or cancelled by racing. GenomeStats is shared between the
evaluation workers and the tournament manager and guards its state with a
lock. ImmutableGenomeStats is the snapshot handed to run evaluators.

Usage:
	stats = GenomeStats(genome, open_instances=instances, running_instances=[])
	instance = stats.try_start_instance()
	stats.finish_instance(instance, RuntimeResult(1.3))
	snapshot = stats.to_immutable()
"""

import threading
from typing import Hashable, Iterable, Mapping, Optional

from algotune.errors import PreconditionViolation
from algotune.evaluation.results import RunResult
from algotune.genomes.genome import ImmutableGenome
from algotune.logger import TunerLogger

Instance = Hashable

_log = TunerLogger("GenomeStats")


class ImmutableGenomeStats:
	"""
	Read-only snapshot of a genome's instance states.

	Args:
		genome: The genome
		open_instances: Instances not yet started
		running_instances: Instances currently evaluated
		finished_instances: Results per finished instance
		cancelled_instances: Instances dropped because racing removed the genome
	"""

	__slots__ = ("genome", "open_instances", "running_instances", "finished_instances", "cancelled_instances")

	def __init__(
		self,
		genome: ImmutableGenome,
		open_instances: Iterable[Instance] = (),
		running_instances: Iterable[Instance] = (),
		finished_instances: Optional[Mapping[Instance, RunResult]] = None,
		cancelled_instances: Iterable[Instance] = (),
	):
		self.genome = genome
		self.open_instances = tuple(open_instances)
		self.running_instances = tuple(running_instances)
		self.finished_instances: dict[Instance, RunResult] = dict(finished_instances or {})
		self.cancelled_instances = tuple(cancelled_instances)
		if self.total_instance_count == 0:
			raise PreconditionViolation(f"Genome stats of {genome} need at least one instance")

	@property
	def total_instance_count(self) -> int:
		return len(self.open_instances) + len(self.running_instances) + len(self.finished_instances) + len(self.cancelled_instances)

	@property
	def is_cancelled_by_racing(self) -> bool:
		return bool(self.cancelled_instances)

	@property
	def has_open_instances(self) -> bool:
		return bool(self.open_instances)

	@property
	def has_open_or_running_instances(self) -> bool:
		return bool(self.open_instances) or bool(self.running_instances)

	@property
	def all_instances_finished_without_cancelled_result(self) -> bool:
		return not self.has_open_or_running_instances and not self.is_cancelled_by_racing and not any(
			result.is_cancelled for result in self.finished_instances.values()
		)

	@property
	def runtime_of_finished_instances(self) -> float:
		return sum(result.runtime for result in self.finished_instances.values())

	def with_finished_instances(self, results: Mapping[Instance, RunResult]) -> 'ImmutableGenomeStats':
		"""Snapshot whose open and running instances are replaced by `results`."""
		finished = dict(self.finished_instances)
		finished.update(results)
		return ImmutableGenomeStats(self.genome, (), (), finished)

	def __repr__(self) -> str:
		return (
			f"ImmutableGenomeStats({self.genome}, open={len(self.open_instances)}, "
			f"running={len(self.running_instances)}, finished={len(self.finished_instances)}, "
			f"cancelled_by_racing={self.is_cancelled_by_racing})"
		)


class GenomeStats:
	"""
	Mutable, thread-safe instance states of one genome.

	Args:
		genome: The genome
		open_instances: Instances that still need an evaluation
		running_instances: Instances whose evaluation already started
	"""

	def __init__(self, genome: ImmutableGenome, open_instances: Iterable[Instance], running_instances: Iterable[Instance] = ()):
		self.genome = genome
		self._lock = threading.Lock()
		# dicts keep insertion order, which keeps scheduling deterministic
		self._open: dict[Instance, None] = dict.fromkeys(open_instances)
		self._running: dict[Instance, None] = dict.fromkeys(running_instances)
		self._finished: dict[Instance, RunResult] = {}
		self._cancelled_by_racing: dict[Instance, None] = {}
		self._is_cancelled_by_racing = False
		if self.total_instance_count == 0:
			raise PreconditionViolation(f"Genome stats of {genome} need at least one instance")

	@property
	def total_instance_count(self) -> int:
		return len(self._open) + len(self._running) + len(self._finished) + len(self._cancelled_by_racing)

	@property
	def finished_instances(self) -> dict[Instance, RunResult]:
		with self._lock:
			return dict(self._finished)

	@property
	def open_instances(self) -> tuple[Instance, ...]:
		with self._lock:
			return tuple(self._open)

	@property
	def running_instances(self) -> tuple[Instance, ...]:
		with self._lock:
			return tuple(self._running)

	@property
	def cancelled_instances(self) -> tuple[Instance, ...]:
		with self._lock:
			return tuple(self._cancelled_by_racing)

	@property
	def is_cancelled_by_racing(self) -> bool:
		return self._is_cancelled_by_racing

	@property
	def has_open_instances(self) -> bool:
		with self._lock:
			return bool(self._open)

	@property
	def has_open_or_running_instances(self) -> bool:
		with self._lock:
			return bool(self._open) or bool(self._running)

	@property
	def runtime_of_finished_instances(self) -> float:
		with self._lock:
			return sum(result.runtime for result in self._finished.values())

	def try_start_instance(self) -> Optional[Instance]:
		"""Move the first open instance to running and return it, or None."""
		with self._lock:
			if not self._open:
				return None
			instance = next(iter(self._open))
			del self._open[instance]
			self._running[instance] = None
			return instance

	def notify_instance_started(self, instance: Instance) -> bool:
		"""Mark an instance started elsewhere as running. False if it was not open."""
		with self._lock:
			if instance not in self._open:
				return False
			del self._open[instance]
			self._running[instance] = None
			return True

	def finish_instance(self, instance: Instance, result: RunResult) -> bool:
		"""
		Record the result of a running instance.

		Returns:
			True if the instance was running (or the genome is already cancelled
			by racing, in which case the result is dropped), False otherwise
		"""
		with self._lock:
			if self._is_cancelled_by_racing:
				return True
			if instance not in self._running or instance in self._open:
				return False
			del self._running[instance]
			self._finished.setdefault(instance, result)
			return True

	def requeue_instance(self, instance: Instance) -> bool:
		"""Move a running instance back to open. False if it was not running."""
		with self._lock:
			if instance not in self._running or instance in self._open or instance in self._finished:
				return False
			del self._running[instance]
			self._open[instance] = None
			return True

	def update_cancelled_by_racing(self) -> bool:
		"""
		Cancel all open and running instances.

		Returns:
			False if the genome was already cancelled or has nothing left to cancel
		"""
		with self._lock:
			if self._is_cancelled_by_racing or not (self._open or self._running):
				return False
			open_count = len(self._open)
			running_count = len(self._running)
			for instance in list(self._open) + list(self._running):
				self._cancelled_by_racing[instance] = None
			self._open.clear()
			self._running.clear()
			self._is_cancelled_by_racing = True
		_log.info(
			f"Genome {self.genome} was cancelled by racing with {open_count} open and {running_count} running instances."
		)
		return True

	def to_immutable(self) -> ImmutableGenomeStats:
		with self._lock:
			return ImmutableGenomeStats(
				self.genome,
				tuple(self._open),
				tuple(self._running),
				dict(self._finished),
				tuple(self._cancelled_by_racing),
			)

	def __repr__(self) -> str:
		return repr(self.to_immutable())


def create_immutable_genome_stats(
	genomes: Iterable[ImmutableGenome],
	instances: Iterable[Instance],
	results: Mapping[ImmutableGenome, Mapping[Instance, RunResult]],
) -> list[ImmutableGenomeStats]:
	"""Snapshots of fully evaluated genomes. Raises KeyError for missing results."""
	instances = list(instances)
	snapshots = []
	for genome in genomes:
		genome_results = results.get(genome, {})
		missing = [instance for instance in instances if instance not in genome_results]
		if missing:
			raise KeyError(f"Genome {genome} has no results for instances {missing}")
		snapshots.append(ImmutableGenomeStats(genome, finished_instances={i: genome_results[i] for i in instances}))
	return snapshots
