"""
Search points: real-valued vectors handled by the continuous optimizers.

SearchPoint keeps its values as a float64 tensor. BoundedSearchPoint adds a
box [lower, upper] and a smooth bijection between the box and the periodic
interval [0, 10] on which the optimizers work, so any real value maps back
into bounds.

Search points compare by identity: the optimizers rank and look up the
points they produced, and two points with equal values are still different
candidates.

Usage:
	lower = torch.tensor([0.0, -5.0], dtype=torch.float64)
	upper = torch.tensor([1.0, 5.0], dtype=torch.float64)
	encoded = BoundedSearchPoint.standardize_values([0.5, 0.0], lower, upper)
	point = BoundedSearchPoint(encoded, lower, upper)
	point.map_into_bounds()  # tensor([0.5, 0.0])
"""

import math
from abc import ABC, abstractmethod
from typing import Generic, Sequence, TypeVar

import torch

from algotune.errors import PreconditionViolation


def as_vector(values) -> torch.Tensor:
	"""Copy `values` into a one-dimensional float64 tensor."""
	if isinstance(values, torch.Tensor):
		return values.detach().to(dtype=torch.float64).clone().reshape(-1)
	return torch.tensor(list(values), dtype=torch.float64).reshape(-1)


class SearchPoint:
	"""Point in a continuous search space."""

	def __init__(self, values):
		self.values = as_vector(values)

	def is_valid(self) -> bool:
		return True

	def __repr__(self) -> str:
		return f"{type(self).__name__}({self.values.tolist()})"


class BoundedSearchPoint(SearchPoint):
	"""Search point whose values are decoded into a box."""

	def __init__(self, values, lower_bounds, upper_bounds):
		super().__init__(values)
		self.lower_bounds = as_vector(lower_bounds)
		self.upper_bounds = as_vector(upper_bounds)
		self.validate_bounds(self.values.shape[0], self.lower_bounds, self.upper_bounds)

	@staticmethod
	def validate_bounds(dimension: int, lower_bounds: torch.Tensor, upper_bounds: torch.Tensor) -> None:
		if lower_bounds.shape[0] != dimension:
			raise PreconditionViolation(f"Expected {dimension} lower bounds, got {lower_bounds.shape[0]}")
		if upper_bounds.shape[0] != dimension:
			raise PreconditionViolation(f"Expected {dimension} upper bounds, got {upper_bounds.shape[0]}")
		if bool((lower_bounds > upper_bounds).any()):
			raise PreconditionViolation(f"Lower bounds {lower_bounds.tolist()} exceed upper bounds {upper_bounds.tolist()}")
		if bool(torch.isinf(lower_bounds).any()) or bool(torch.isinf(upper_bounds).any()):
			raise PreconditionViolation("Bounds must be finite")

	@staticmethod
	def standardize_values(values, lower_bounds, upper_bounds) -> torch.Tensor:
		"""Encode values inside [lower, upper] into [0, 10]."""
		values = as_vector(values)
		lower_bounds = as_vector(lower_bounds)
		upper_bounds = as_vector(upper_bounds)
		BoundedSearchPoint.validate_bounds(values.shape[0], lower_bounds, upper_bounds)
		width = upper_bounds - lower_bounds
		safe_width = torch.where(width == 0, torch.ones_like(width), width)
		ratio = torch.clamp(1 - 2 * (values - lower_bounds) / safe_width, -1.0, 1.0)
		encoded = 10 * torch.acos(ratio) / math.pi
		return torch.where(width == 0, torch.zeros_like(encoded), encoded)

	def map_into_bounds(self) -> torch.Tensor:
		"""Decode the values into the box."""
		width = self.upper_bounds - self.lower_bounds
		return self.lower_bounds + width * (1 - torch.cos(math.pi * self.values / 10)) / 2


P = TypeVar('P', bound=SearchPoint)


class SearchPointSorter(ABC, Generic[P]):
	"""Orders search points, best first."""

	@abstractmethod
	def sort(self, points: Sequence[P]) -> list[int]:
		"""Indices of `points`, best first."""
		...

	def determine_ranks(self, points: Sequence[P]) -> dict[P, int]:
		"""Rank (0 = best) of every point, keyed by the point object."""
		return {points[index]: rank for rank, index in enumerate(self.sort(points))}
