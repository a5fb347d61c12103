"""
Value domains of tunable parameters.

Every parameter of the target algorithm owns a domain that knows how to
sample, mutate and validate values, and how to embed them into the real
numbers for the continuous optimizers.

Domains:
- CategoricalDomain: finite list of values (strings, numbers, booleans)
- IntegerDomain: closed integer interval
- ContinuousDomain: closed real interval
- LogDomain: positive real interval, sampled and mutated in log space
- DiscreteLogDomain: positive integer interval, sampled and mutated in log space

Usage:
	domain = IntegerDomain(0, 100)
	value = domain.generate_random_value(rng)
	value = domain.mutate_value(value, 0.1, rng)
	assert domain.contains_value(value)
"""

import math
from abc import ABC, abstractmethod
from numbers import Integral, Real
from typing import Any, Hashable, Optional, Sequence

from algotune.errors import PreconditionViolation
from algotune.randomizer import Randomizer


class Domain(ABC):
	"""Abstract base for parameter domains."""

	@property
	@abstractmethod
	def domain_size(self) -> float:
		"""Number of distinct values, math.inf for real intervals."""
		...

	@property
	def is_categorical(self) -> bool:
		return False

	@property
	def is_float(self) -> bool:
		"""Whether values are real numbers (and never need rounding)."""
		return False

	@abstractmethod
	def generate_random_value(self, rng: Randomizer) -> Any:
		...

	@abstractmethod
	def mutate_value(self, value: Any, variance_percentage: float, rng: Randomizer) -> Any:
		...

	@abstractmethod
	def contains_value(self, value: Any) -> bool:
		...

	@abstractmethod
	def convert_to_float(self, value: Any) -> float:
		...

	@abstractmethod
	def convert_back(self, value: float) -> Any:
		...

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__}


class CategoricalDomain(Domain):
	"""Finite list of possible values. The float embedding of a value is its index."""

	def __init__(self, possible_values: Sequence[Hashable], default_value: Optional[Hashable] = None):
		if not possible_values:
			raise PreconditionViolation("A categorical domain needs at least one possible value")
		if default_value is not None and default_value not in possible_values:
			raise PreconditionViolation(f"Default value {default_value!r} is not one of {list(possible_values)}")
		self.possible_values = list(possible_values)
		self.default_value = default_value

	@property
	def domain_size(self) -> float:
		return len(self.possible_values)

	@property
	def is_categorical(self) -> bool:
		return True

	def generate_random_value(self, rng: Randomizer) -> Any:
		return self.possible_values[rng.next_int(0, len(self.possible_values))]

	def mutate_value(self, value: Any, variance_percentage: float, rng: Randomizer) -> Any:
		return self.generate_random_value(rng)

	def contains_value(self, value: Any) -> bool:
		return value in self.possible_values

	def index_of(self, value: Any) -> int:
		return self.possible_values.index(value)

	def convert_to_float(self, value: Any) -> float:
		return float(self.index_of(value))

	def convert_back(self, value: float) -> Any:
		return self.possible_values[int(value)]

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__, "values": self.possible_values, "default": self.default_value}

	def __repr__(self) -> str:
		return f"CategoricalDomain({self.possible_values})"


class NumericalDomain(Domain):
	"""Closed interval [minimum, maximum]."""

	def __init__(self, minimum: float, maximum: float, default_value: Optional[float] = None):
		if maximum < minimum:
			raise PreconditionViolation(f"Maximum {maximum} must not be smaller than minimum {minimum}")
		self.minimum = minimum
		self.maximum = maximum
		self.default_value = default_value

	@staticmethod
	def _check_variance_percentage(variance_percentage: float) -> None:
		if not 0 < variance_percentage <= 1:
			raise ValueError(f"Variance percentage must be in (0, 1], but was {variance_percentage}")

	def _standard_deviation(self, variance_percentage: float, minimum: float, maximum: float) -> float:
		fraction = variance_percentage / 100
		return 10 * math.sqrt(fraction * maximum - fraction * minimum)

	def to_dict(self) -> dict[str, Any]:
		return {"type": type(self).__name__, "minimum": self.minimum, "maximum": self.maximum, "default": self.default_value}

	def __repr__(self) -> str:
		return f"{type(self).__name__}({self.minimum}, {self.maximum})"


class IntegerDomain(NumericalDomain):
	"""Closed integer interval."""

	def __init__(self, minimum: int, maximum: int, default_value: Optional[int] = None):
		super().__init__(int(minimum), int(maximum), default_value)

	@property
	def domain_size(self) -> float:
		return self.maximum - self.minimum + 1

	def generate_random_value(self, rng: Randomizer) -> int:
		return rng.next_int(self.minimum, self.maximum + 1)

	def mutate_value(self, value: int, variance_percentage: float, rng: Randomizer) -> int:
		self._check_variance_percentage(variance_percentage)
		if self.minimum == self.maximum:
			return self.minimum
		deviation = self._standard_deviation(variance_percentage, self.minimum, self.maximum)
		sample = rng.sample_truncated_normal(value, deviation, self.minimum, self.maximum)
		return min(max(round(sample), self.minimum), self.maximum)

	def contains_value(self, value: Any) -> bool:
		return isinstance(value, Integral) and not isinstance(value, bool) and self.minimum <= value <= self.maximum

	def convert_to_float(self, value: int) -> float:
		return float(value)

	def convert_back(self, value: float) -> int:
		return int(value)


class ContinuousDomain(NumericalDomain):
	"""Closed real interval."""

	def __init__(self, minimum: float, maximum: float, default_value: Optional[float] = None):
		super().__init__(float(minimum), float(maximum), default_value)

	@property
	def domain_size(self) -> float:
		return math.inf

	@property
	def is_float(self) -> bool:
		return True

	def generate_random_value(self, rng: Randomizer) -> float:
		return rng.sample_uniform(self.minimum, self.maximum)

	def mutate_value(self, value: float, variance_percentage: float, rng: Randomizer) -> float:
		self._check_variance_percentage(variance_percentage)
		deviation = self._standard_deviation(variance_percentage, self.minimum, self.maximum)
		return rng.sample_truncated_normal(value, deviation, self.minimum, self.maximum)

	def contains_value(self, value: Any) -> bool:
		return isinstance(value, Real) and not isinstance(value, bool) and self.minimum <= value <= self.maximum

	def convert_to_float(self, value: float) -> float:
		return float(value)

	def convert_back(self, value: float) -> float:
		return float(value)


class LogDomain(ContinuousDomain):
	"""Positive real interval where sampling and mutation happen on log(value)."""

	def __init__(self, minimum: float, maximum: float, default_value: Optional[float] = None):
		if minimum <= 0:
			raise PreconditionViolation(f"Log domains need a positive minimum, got {minimum}")
		super().__init__(minimum, maximum, default_value)
		self._log_minimum = math.log(self.minimum)
		self._log_maximum = math.log(self.maximum)

	def generate_random_value(self, rng: Randomizer) -> float:
		value = math.exp(rng.sample_uniform(self._log_minimum, self._log_maximum))
		return min(max(value, self.minimum), self.maximum)

	def mutate_value(self, value: float, variance_percentage: float, rng: Randomizer) -> float:
		self._check_variance_percentage(variance_percentage)
		deviation = self._standard_deviation(variance_percentage, self._log_minimum, self._log_maximum)
		sample = rng.sample_truncated_normal(math.log(value), deviation, self._log_minimum, self._log_maximum)
		return min(max(math.exp(sample), self.minimum), self.maximum)


class DiscreteLogDomain(IntegerDomain):
	"""Positive integer interval where sampling and mutation happen on log(value)."""

	def __init__(self, minimum: int, maximum: int, default_value: Optional[int] = None):
		if minimum <= 0:
			raise PreconditionViolation(f"Log domains need a positive minimum, got {minimum}")
		super().__init__(minimum, maximum, default_value)
		self._log_minimum = math.log(self.minimum)
		self._log_maximum = math.log(self.maximum)

	def generate_random_value(self, rng: Randomizer) -> int:
		value = round(math.exp(rng.sample_uniform(self._log_minimum, self._log_maximum)))
		return min(max(value, self.minimum), self.maximum)

	def mutate_value(self, value: int, variance_percentage: float, rng: Randomizer) -> int:
		self._check_variance_percentage(variance_percentage)
		if self.minimum == self.maximum:
			return self.minimum
		deviation = self._standard_deviation(variance_percentage, self._log_minimum, self._log_maximum)
		sample = rng.sample_truncated_normal(math.log(value), deviation, self._log_minimum, self._log_maximum)
		return min(max(round(math.exp(sample)), self.minimum), self.maximum)
