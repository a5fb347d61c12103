"""
Exception taxonomy for the tuning engine.

Precondition violations and configuration inconsistencies are fatal to the
call that detects them. Repair exhaustion is the only failure produced by the
genome repair loop. Evaluation faults surface through the futures returned by
the evaluation coordinator.

Usage:
	from algotune.errors import PreconditionViolation

	if lower > upper:
		raise PreconditionViolation(f"Lower bound {lower} exceeds upper bound {upper}")
"""


class PreconditionViolation(ValueError):
	"""Required state is missing or an argument does not fit the receiving object."""


class ConfigurationError(ValueError):
	"""The configuration cannot be run (e.g. too few genomes, unmapped phase target)."""


class RepairExhaustedError(TimeoutError):
	"""No valid genome was found within the bounded number of repair attempts."""


class EvaluationFault(RuntimeError):
	"""A target algorithm run raised while a generation was being evaluated."""


class RacingInvariantViolation(RuntimeError):
	"""Racing would cancel a genome that can still win its mini tournament."""

	def __init__(self, cancelled: int, participants: int, winners: int):
		super().__init__(
			f"Racing wants to cancel {cancelled} genomes, but only "
			f"{participants - winners} of {participants} participants may be cancelled "
			f"when {winners} winners are required."
		)
		self.cancelled = cancelled
		self.participants = participants
		self.winners = winners
