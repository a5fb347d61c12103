"""
Target algorithm contract.

The tuner never runs a target algorithm itself. Callers pass an object with
a `run(genome, instance, token)` method; the evaluation coordinator calls it
from worker threads and cancels it cooperatively through the token.

Usage:
	class Solver:
		def run(self, genome, instance, token):
			...
			if token.is_cancelled:
				return RuntimeResult.create_cancelled_result(elapsed)
			return RuntimeResult(elapsed)
"""

import threading
from typing import Optional, Protocol, runtime_checkable

from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.results import RunResult
from algotune.genomes.genome import Genome


class CancellationToken:
	"""Cooperative cancellation flag shared between coordinator and run."""

	def __init__(self):
		self._event = threading.Event()

	def cancel(self) -> None:
		self._event.set()

	@property
	def is_cancelled(self) -> bool:
		return self._event.is_set()

	def wait(self, timeout: Optional[float] = None) -> bool:
		"""Block until cancelled or `timeout` seconds passed. True if cancelled."""
		return self._event.wait(timeout)


@runtime_checkable
class TargetAlgorithm(Protocol):
	"""Runs one genome on one instance."""

	def run(self, genome: Genome, instance: Instance, token: CancellationToken) -> RunResult:
		"""
		Evaluate `genome` on `instance`.

		Implementations should check `token.is_cancelled` regularly and stop
		early when it is set; the result of a cancelled run is discarded.
		"""
		...
