"""
Results of single target algorithm runs.

Every result carries the runtime of the run in seconds and whether the run
was cancelled (timeout or racing). ContinuousResult adds the objective value
for value-based tuning.

Usage:
	result = RuntimeResult(12.5)
	timeout = RuntimeResult.create_cancelled_result(cpu_timeout)
	quality = ContinuousResult(runtime=3.2, value=0.87)
"""

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RunResult:
	"""Base result: runtime in seconds and cancellation flag."""
	runtime: float
	is_cancelled: bool = False

	def __post_init__(self):
		if self.runtime < 0:
			raise ValueError(f"Runtime must be nonnegative, but was {self.runtime}.")

	@classmethod
	def create_cancelled_result(cls, runtime: float) -> 'RunResult':
		return cls(runtime, is_cancelled=True)

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__, "runtime": self.runtime, "is_cancelled": self.is_cancelled}


@dataclass(frozen=True)
class RuntimeResult(RunResult):
	"""Result of a runtime-tuning run; the runtime is the objective."""

	def __str__(self) -> str:
		suffix = " (cancelled)" if self.is_cancelled else ""
		return f"{self.runtime:.3f}s{suffix}"


@dataclass(frozen=True)
class ContinuousResult(RunResult):
	"""Result carrying an objective value next to the runtime."""
	value: float = math.nan

	@classmethod
	def create_cancelled_result(cls, runtime: float) -> 'ContinuousResult':
		return cls(runtime, is_cancelled=True, value=math.nan)

	@property
	def is_valid(self) -> bool:
		return not self.is_cancelled and math.isfinite(self.value)

	def to_dict(self) -> dict[str, Any]:
		data = super().to_dict()
		data["value"] = self.value
		return data

	def __str__(self) -> str:
		suffix = " (cancelled)" if self.is_cancelled else ""
		return f"{self.value} in {self.runtime:.3f}s{suffix}"


_RESULT_TYPES = {cls.__name__: cls for cls in (RunResult, RuntimeResult, ContinuousResult)}


def result_from_dict(data: dict[str, Any]) -> RunResult:
	"""Rebuild a result written by `to_dict`."""
	kind = data.get("type", "RunResult")
	if kind not in _RESULT_TYPES:
		raise ValueError(f"Unknown result type: {kind}")
	arguments = {key: value for key, value in data.items() if key != "type"}
	return _RESULT_TYPES[kind](**arguments)
