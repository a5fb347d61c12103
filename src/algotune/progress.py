"""
Progress tracking for tuning runs.

Records the incumbent's score per generation and logs it in a standardized
format, together with the phase that produced it.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional


@dataclass
class ProgressStats:
	"""Statistics for a single generation."""
	generation: int
	phase: str
	best_global: float
	best_current: float
	improved: bool = False


class ProgressTracker:
	"""
	Tracks the incumbent score across generations.

	Usage:
		tracker = ProgressTracker(logger=run_logger, minimize=True, total_generations=100)

		for generation in range(generations):
			...
			tracker.tick(score_of(incumbent), generation=generation, phase="GgaStrategy")

		tracker.log_summary()

	The tracker will log lines like:
		[Gen 1/100] (GgaStrategy) best=10.4900, current=10.5200, improved=True
	"""

	def __init__(
		self,
		logger: Optional[Callable[[str], None]] = None,
		minimize: bool = True,
		prefix: str = "",
		total_generations: Optional[int] = None,
	):
		"""
		Initialize progress tracker.

		Args:
			logger: Callable that logs messages (e.g., Logger instance, print)
			minimize: If True, lower scores are better (runtimes)
			prefix: Prefix for log messages (e.g., "[Tuner]")
			total_generations: Total expected generations (for progress display)
		"""
		self._log = logger or print
		self._minimize = minimize
		self._prefix = prefix + " " if prefix else ""
		self._total = total_generations

		self._best_global: Optional[float] = None
		self._best_generation: int = 0
		self._history: List[ProgressStats] = []

	def tick(self, score: float, generation: Optional[int] = None, phase: str = "", log: bool = True) -> ProgressStats:
		"""
		Record the incumbent score of one generation.

		Args:
			score: Score of the current incumbent
			generation: Current generation number (auto-incremented if None)
			phase: Name of the strategy that ran the generation
			log: Whether to log progress

		Returns:
			ProgressStats for this generation
		"""
		gen = generation if generation is not None else len(self._history)

		improved = (
			self._best_global is None
			or (self._minimize and score < self._best_global)
			or (not self._minimize and score > self._best_global)
		)
		if improved:
			self._best_global = score
			self._best_generation = gen

		stats = ProgressStats(
			generation=gen,
			phase=phase,
			best_global=self._best_global,
			best_current=score,
			improved=improved,
		)
		self._history.append(stats)

		if log:
			self._log_tick(stats)
		return stats

	def _log_tick(self, stats: ProgressStats) -> None:
		gen_str = f"Gen {stats.generation + 1}"
		if self._total:
			gen_str = f"Gen {stats.generation + 1}/{self._total}"
		phase_str = f" ({stats.phase})" if stats.phase else ""

		self._log(
			f"{self._prefix}[{gen_str}]{phase_str} "
			f"best={stats.best_global:.4f}, "
			f"current={stats.best_current:.4f}, "
			f"improved={stats.improved}"
		)

	@property
	def best_global(self) -> Optional[float]:
		"""Best score seen so far."""
		return self._best_global

	@property
	def best_generation(self) -> int:
		return self._best_generation

	@property
	def history(self) -> List[ProgressStats]:
		return self._history.copy()

	@property
	def generations_run(self) -> int:
		return len(self._history)

	def summary(self) -> dict:
		"""Get summary statistics."""
		if not self._history:
			return {"generations": 0}

		first = self._history[0]
		return {
			"generations": len(self._history),
			"initial_score": first.best_current,
			"final_score": self._best_global,
			"best_generation": self._best_generation,
			"improvements": sum(1 for s in self._history if s.improved),
			"phases": sorted({s.phase for s in self._history if s.phase}),
		}

	def log_summary(self) -> None:
		"""Log a summary of the tuning run."""
		s = self.summary()
		if s["generations"] == 0:
			self._log(f"{self._prefix}No generations completed")
			return

		self._log(f"{self._prefix}Summary:")
		self._log(f"  Generations: {s['generations']}")
		self._log(f"  Initial: {s['initial_score']:.4f}")
		self._log(f"  Final: {s['final_score']:.4f}")
		self._log(f"  Best at generation: {s['best_generation'] + 1}")
		self._log(f"  Total improvements: {s['improvements']}")
