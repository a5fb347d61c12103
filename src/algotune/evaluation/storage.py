"""
Thread-safe store of run results, keyed by genome content and instance.

Usage:
	storage = ResultStorage()
	storage.store(genome, instance, RuntimeResult(2.0))
	result = storage.query(genome, instance)
	configurations, evaluations = storage.evaluation_statistic()
"""

import threading
from typing import Optional

from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.results import RunResult
from algotune.genomes.genome import Genome, ImmutableGenome


def _key(genome) -> ImmutableGenome:
	return genome if isinstance(genome, ImmutableGenome) else ImmutableGenome(genome)


class ResultStorage:
	"""Results of all finished runs. A second result for the same pair replaces the first."""

	def __init__(self):
		self._lock = threading.Lock()
		self._results: dict[ImmutableGenome, dict[Instance, RunResult]] = {}

	def store(self, genome: Genome | ImmutableGenome, instance: Instance, result: RunResult) -> None:
		with self._lock:
			self._results.setdefault(_key(genome), {})[instance] = result

	def query(self, genome: Genome | ImmutableGenome, instance: Instance) -> Optional[RunResult]:
		with self._lock:
			return self._results.get(_key(genome), {}).get(instance)

	def all_results(self, genome: Genome | ImmutableGenome) -> dict[Instance, RunResult]:
		with self._lock:
			return dict(self._results.get(_key(genome), {}))

	def all_genomes(self) -> list[ImmutableGenome]:
		with self._lock:
			return list(self._results)

	def evaluation_statistic(self) -> tuple[int, int]:
		"""(number of evaluated configurations, total number of stored runs)."""
		with self._lock:
			return len(self._results), sum(len(results) for results in self._results.values())

	def __len__(self) -> int:
		return self.evaluation_statistic()[1]

	def __repr__(self) -> str:
		configurations, evaluations = self.evaluation_statistic()
		return f"ResultStorage(configurations={configurations}, evaluations={evaluations})"
