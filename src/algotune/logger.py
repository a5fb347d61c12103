"""
Logging for tuning runs.

This module provides:
- Logger: run log of one tuning run, written to a timestamped file under a
  date-based directory structure (logs/YYYY/MM/DD/) and optionally echoed to
  the console. The tuner creates one when `log_directory` is configured.
- TunerLogger: per-component wrapper with TRACE, DEBUG, INFO, WARNING and
  ERROR levels, used by strategies, optimizers and the evaluation coordinator
"""

import os
import logging
from datetime import datetime
from typing import Optional, Callable

# Custom TRACE level (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class Logger:
	"""
	Run log of a tuning run.

	Callable, so it can be handed to anything that accepts a Callable[[str], None]
	(the tuner, the progress tracker, component loggers).

	Usage:
		with Logger("sat_solver", log_dir="runs/") as run_log:
			run_log.log_configuration(config)
			run_log.header("Phase GgaStrategy from generation 0")
			tuner = AlgorithmTuner(..., logger=run_log)

	Attributes:
		name: Prefix of the log file name
		log_file: Path to the log file
	"""

	def __init__(
		self,
		name: str = "tuning",
		log_dir: Optional[str] = None,
		project_root: Optional[str] = None,
		console: bool = True,
	):
		"""
		Args:
			name: Prefix of the log file name (e.g., "sat_solver")
			log_dir: Directory of the log file (default: project_root/logs/YYYY/MM/DD/)
			project_root: Root of the default log directory (default: current working directory)
			console: Whether to echo every line to the console
		"""
		self.name = name
		now = datetime.now()

		if log_dir is None:
			log_dir = os.path.join(
				project_root or os.getcwd(), "logs",
				now.strftime("%Y"), now.strftime("%m"), now.strftime("%d"),
			)
		os.makedirs(log_dir, exist_ok=True)

		timestamp = now.strftime("%Y%m%d_%H%M%S")
		self.log_file = os.path.join(log_dir, f"{name}_{timestamp}.log")

		# one logging.Logger per run, so parallel runs never share handlers
		self._logger = logging.getLogger(f"algotune.run.{name}.{timestamp}.{id(self)}")
		self._logger.setLevel(logging.INFO)
		self._logger.propagate = False
		formatter = logging.Formatter("%(asctime)s | %(message)s", datefmt="%H:%M:%S")

		handlers: list[logging.Handler] = [logging.FileHandler(self.log_file)]
		if console:
			handlers.append(logging.StreamHandler())
		for handler in handlers:
			handler.setFormatter(formatter)
			self._logger.addHandler(handler)

	def __call__(self, message: str = "") -> None:
		self.log(message)

	def __enter__(self) -> 'Logger':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	def log(self, message: str = "") -> None:
		"""Write one line and flush it, so the log follows a running tuner."""
		self._logger.info(message)
		for handler in self._logger.handlers:
			handler.flush()

	def separator(self, char: str = "=", width: int = 70) -> None:
		self.log(char * width)

	def header(self, title: str, char: str = "=", width: int = 70) -> None:
		"""Log a title between two separator lines."""
		self.log()
		self.separator(char, width)
		self.log(f"  {title}")
		self.separator(char, width)

	def log_configuration(self, configuration) -> None:
		"""Log the YAML form of a TunerConfiguration."""
		self.header("Configuration")
		for line in configuration.to_yaml().splitlines():
			self.log(f"  {line}")

	def close(self) -> None:
		"""Close the handlers so the log file can be moved or removed."""
		for handler in list(self._logger.handlers):
			handler.close()
			self._logger.removeHandler(handler)

	def __repr__(self) -> str:
		return f"Logger(name='{self.name}', log_file='{self.log_file}')"


class TunerLogger:
	"""
	Component logger with TRACE, DEBUG, INFO, WARNING and ERROR levels.

	TRACE: per-run scheduling details of the evaluation coordinator
	DEBUG: individual genomes, repairs, termination criteria that fired
	INFO: phase transitions, generation summaries, racing cancellations
	WARNING/ERROR: recovered anomalies and failures

	Usage:
		logger = TunerLogger("CmaEs", level=logging.DEBUG)
		logger.debug("Sampled 12 points")
		logger("Generation complete")

	With a run logger:
		logger = TunerLogger("Gga", file_logger=Logger("run"))
	"""

	def __init__(
		self,
		name: str,
		level: int = logging.INFO,
		file_logger: Optional[Callable[[str], None]] = None,
	):
		self._logger = logging.getLogger(f"algotune.{name}")
		if not file_logger and not self._logger.handlers:
			handler = logging.StreamHandler()
			handler.setFormatter(logging.Formatter("%(message)s"))
			self._logger.addHandler(handler)
		self._logger.setLevel(level)
		self._name = name
		self._file_logger = file_logger

	@property
	def name(self) -> str:
		return self._name

	def is_enabled_for(self, level: int) -> bool:
		return self._logger.isEnabledFor(level)

	def _emit(self, level: int, msg: str) -> None:
		if not self._logger.isEnabledFor(level):
			return
		if self._file_logger and level > TRACE:
			self._file_logger(msg)
		else:
			self._logger.log(level, msg)

	def trace(self, msg: str) -> None:
		"""Log at TRACE level (never forwarded to the run log file)."""
		self._emit(TRACE, msg)

	def debug(self, msg: str) -> None:
		self._emit(logging.DEBUG, msg)

	def info(self, msg: str) -> None:
		self._emit(logging.INFO, msg)

	def warning(self, msg: str) -> None:
		self._emit(logging.WARNING, msg)

	def error(self, msg: str) -> None:
		self._emit(logging.ERROR, msg)

	def __call__(self, msg: str) -> None:
		"""Default: INFO level."""
		self.info(msg)

	def set_level(self, level: int) -> None:
		self._logger.setLevel(level)

