"""
Termination criteria for CMA-ES.

Each criterion is an independent predicate over the complete optimizer state
(CmaEsElements). Missing state raises PreconditionViolation; a firing
criterion is the normal way for a CMA-ES phase to end.

Criteria:
- ConditionCov: condition number of the covariance matrix exceeds MAX_CONDITION
- NoEffectAxis: a 0.1 sigma step along a principal axis leaves the mean unchanged
- NoEffectCoord: a 0.2 sigma C[i, i] step along a coordinate leaves the mean unchanged
- TolUpSigma: sigma / sigma_0 exceeds MAX_FACTOR times sqrt(largest eigenvalue)
- MaxIterations: generation counter reached a bound
"""

import math
from abc import ABC, abstractmethod
from typing import Any

import torch

from algotune.errors import PreconditionViolation


class TerminationCriterion(ABC):
	"""Predicate deciding whether CMA-ES should stop."""

	@abstractmethod
	def is_met(self, data: 'CmaEsElements') -> bool:
		...

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__}

	@staticmethod
	def _require_complete(data) -> None:
		if data is None:
			raise PreconditionViolation("Termination criteria need the CMA-ES state")
		if not data.is_completely_specified():
			raise PreconditionViolation("Data must be completely specified for this termination criterion.")

	def __repr__(self) -> str:
		return f"{type(self).__name__}()"


class ConditionCov(TerminationCriterion):
	"""Stops when the covariance matrix becomes numerically ill-conditioned."""

	MAX_CONDITION = 1e14

	def is_met(self, data) -> bool:
		if data is None:
			raise PreconditionViolation("Termination criteria need the CMA-ES state")
		if data.covariances is None:
			raise PreconditionViolation("Data must have the covariance matrix set for this termination criterion.")
		return condition_number(data.covariances) > self.MAX_CONDITION


class NoEffectAxis(TerminationCriterion):
	"""Stops when a step along principal axis (generation mod n) does not move the mean."""

	def is_met(self, data) -> bool:
		self._require_complete(data)
		index = data.generation % data.configuration.search_space_dimension
		direction = math.sqrt(float(data.eigenvalues[index])) * data.eigenvectors[:, index]
		shifted_mean = data.distribution_mean + (0.1 * data.step_size) * direction
		return torch.equal(data.distribution_mean, shifted_mean)


class NoEffectCoord(TerminationCriterion):
	"""Stops when a step along any single coordinate does not move the mean."""

	def is_met(self, data) -> bool:
		self._require_complete(data)
		mean = data.distribution_mean
		for i in range(data.configuration.search_space_dimension):
			value = float(mean[i])
			if value == value + (0.2 * data.step_size) * float(data.covariances[i, i]):
				return True
		return False


class TolUpSigma(TerminationCriterion):
	"""Stops when the step size diverges relative to the largest principal axis."""

	MAX_FACTOR = 1e4

	def is_met(self, data) -> bool:
		self._require_complete(data)
		largest_eigenvalue = float(data.eigenvalues.max())
		return data.step_size / data.configuration.initial_step_size > self.MAX_FACTOR * math.sqrt(largest_eigenvalue)


class MaxIterations(TerminationCriterion):
	"""Stops once the generation counter reaches `maximum`."""

	def __init__(self, maximum: int):
		if maximum < 1:
			raise ValueError(f"CMA-ES needs at least 1 generation, but was provided with a maximum of {maximum}.")
		self.maximum = maximum

	def is_met(self, data) -> bool:
		if data is None:
			raise PreconditionViolation("Termination criteria need the CMA-ES state")
		return data.generation >= self.maximum

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__, "maximum": self.maximum}

	def __repr__(self) -> str:
		return f"MaxIterations({self.maximum})"


def condition_number(matrix: torch.Tensor) -> float:
	"""Ratio of largest to smallest absolute eigenvalue of a symmetric matrix."""
	magnitudes = torch.linalg.eigvalsh(matrix).abs()
	smallest = float(magnitudes.min())
	if smallest == 0:
		return math.inf
	return float(magnitudes.max()) / smallest


_CRITERIA = {
	cls.__name__: cls
	for cls in (ConditionCov, NoEffectAxis, NoEffectCoord, TolUpSigma, MaxIterations)
}


def criterion_from_dict(data: dict[str, Any]) -> TerminationCriterion:
	name = data["type"]
	if name not in _CRITERIA:
		raise ValueError(f"Unknown termination criterion: {name}")
	arguments = {key: value for key, value in data.items() if key != "type"}
	return _CRITERIA[name](**arguments)
