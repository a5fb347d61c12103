"""
Serialization protocol for status dumps.

Strategies and optimizers persist their complete state as JSON so a tuning
run can be resumed. Every status type implements Serializable; the helpers
below encode the recurring building blocks (tensors, instances).
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, TypeVar

import torch

# Type variable for generic serializable types
T = TypeVar('T', bound='Serializable')

STATUS_FORMAT_VERSION = "1.0"


class Serializable(ABC):
	"""
	Protocol for objects that can be serialized to/from dictionaries and files.

	Implementing classes must define serialize() and deserialize() methods.
	The save() and load() methods provide default JSON file I/O.
	"""

	@abstractmethod
	def serialize(self) -> dict[str, Any]:
		"""
		Serialize the object to a dictionary.

		Returns:
			Dictionary representation suitable for JSON serialization.
		"""
		pass

	@classmethod
	@abstractmethod
	def deserialize(cls: type[T], data: dict[str, Any]) -> T:
		"""
		Deserialize an object from a dictionary.

		Args:
			data: Dictionary representation from serialize()

		Returns:
			Reconstructed object instance
		"""
		pass

	def save(self, filepath: str | Path, **metadata: Any) -> None:
		"""
		Save the object to a JSON file.

		Args:
			filepath: Output file path
			**metadata: Additional metadata to include in the file
		"""
		data = self.serialize()
		data["_metadata"] = {"version": STATUS_FORMAT_VERSION, "type": type(self).__name__, **metadata}

		path = Path(filepath)
		path.parent.mkdir(parents=True, exist_ok=True)

		with open(path, 'w') as f:
			json.dump(data, f, indent=2)

	@classmethod
	def load(cls: type[T], filepath: str | Path) -> tuple[T, Optional[dict[str, Any]]]:
		"""
		Load an object from a JSON file.

		Args:
			filepath: Input file path

		Returns:
			Tuple of (deserialized object, metadata dict or None)
		"""
		with open(filepath, 'r') as f:
			data = json.load(f)

		metadata = data.pop("_metadata", None)
		return cls.deserialize(data), metadata


def tensor_to_list(tensor: Optional[torch.Tensor]) -> Optional[list]:
	return None if tensor is None else tensor.tolist()


def tensor_from_list(values: Optional[list]) -> Optional[torch.Tensor]:
	return None if values is None else torch.tensor(values, dtype=torch.float64)


def instances_to_list(instances) -> list:
	"""Instances as JSON values; tuples become lists."""
	return [list(instance) if isinstance(instance, tuple) else instance for instance in instances]


def instances_from_list(values: list) -> list:
	"""Inverse of instances_to_list: lists become (hashable) tuples again."""
	return [tuple(value) if isinstance(value, list) else value for value in values]
