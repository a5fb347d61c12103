"""
Tuner configuration.

TunerConfiguration holds every option of the engine with its default. The
continuous phases carry their own nested configurations. All of them
round-trip through YAML.

Usage:
	config = TunerConfiguration(population_size=32, maximum_parallel_evaluations=4)
	config.save_yaml("tuning.yaml")
	config = TunerConfiguration.load_yaml("tuning.yaml")
"""

import math
from dataclasses import asdict, dataclass, field, fields
from enum import IntEnum, auto
from pathlib import Path
from typing import Any, Optional

import yaml

from algotune.errors import ConfigurationError
from algotune.optimization.differential_evolution import DifferentialEvolutionConfiguration

# "unbounded" value of generation counters in configuration files
UNBOUNDED = 2 ** 31 - 1


class ContinuousOptimizationMethod(IntEnum):
	"""Phase that follows a GGA phase."""
	NONE = auto()
	JADE = auto()
	CMA_ES = auto()


@dataclass
class StrategyConfiguration:
	"""Options shared by the continuous optimization phases."""

	# Optimize around the incumbent only (local) instead of the whole competitive population (global)
	focus_on_incumbent: bool = False
	maximum_number_generations: int = UNBOUNDED
	# Integer parameters with at least this many values are treated as continuous
	minimum_domain_size: int = 150
	replacement_rate: float = 0.0
	fix_instances: bool = False

	def __post_init__(self):
		if self.maximum_number_generations <= 0:
			raise ConfigurationError(f"Maximum number of generations must be positive, but was {self.maximum_number_generations}.")
		if self.minimum_domain_size <= 0:
			raise ConfigurationError(f"Minimum domain size must be positive, but was {self.minimum_domain_size}.")


@dataclass
class CmaEsStrategyConfiguration(StrategyConfiguration):
	initial_step_size: float = 3.0

	def __post_init__(self):
		super().__post_init__()
		if self.initial_step_size <= 0:
			raise ConfigurationError(f"Initial step size must be positive, but was {self.initial_step_size}.")
		if self.replacement_rate != 0 and not 0 < self.replacement_rate <= 1:
			raise ConfigurationError(f"Replacement rate must be in (0, 1], but was {self.replacement_rate}.")


@dataclass
class DifferentialEvolutionStrategyConfiguration(StrategyConfiguration):
	differential_evolution: DifferentialEvolutionConfiguration = field(default_factory=DifferentialEvolutionConfiguration)

	def __post_init__(self):
		super().__post_init__()
		if isinstance(self.differential_evolution, dict):
			self.differential_evolution = DifferentialEvolutionConfiguration(**self.differential_evolution)
		if not 0 <= self.replacement_rate <= 0.5:
			raise ConfigurationError(f"Replacement rate must be in [0, 0.5], but was {self.replacement_rate}.")


@dataclass
class TunerConfiguration:
	"""Configuration of a tuning run."""

	# Population
	population_size: int = 128
	generations: int = 100
	max_genome_age: int = 3
	population_mutant_ratio: float = 0.25

	# Genome operators
	mutation_rate: float = 0.1
	mutation_variance_percentage: float = 0.1
	crossover_switch_probability: float = 0.1
	max_repair_attempts: int = 20

	# Mini tournaments and racing
	max_mini_tournament_size: int = 8
	tournament_winner_percentage: float = 0.125
	enable_racing: bool = False
	# Seconds per target algorithm run
	cpu_timeout: float = math.inf
	maximum_parallel_evaluations: int = 1

	# Instance schedule
	start_number_instances: int = 5
	end_number_instances: int = 100
	goal_generation: int = 74

	# Phase switching
	continuous_optimization_method: ContinuousOptimizationMethod = ContinuousOptimizationMethod.NONE
	max_gga_generations: int = UNBOUNDED
	max_gga_generations_with_same_incumbent: int = UNBOUNDED

	# Genetic engineering (surrogate model)
	train_model: bool = False
	engineered_population_ratio: float = 0.0
	start_engineering_at_iteration: int = 3
	enable_sexual_selection: bool = False

	# Run control
	random_seed: Optional[int] = None
	status_directory: Optional[str] = None
	# run log file of the tuner, unless a logger is passed to it
	log_directory: Optional[str] = None

	cma_es: CmaEsStrategyConfiguration = field(default_factory=CmaEsStrategyConfiguration)
	differential_evolution: DifferentialEvolutionStrategyConfiguration = field(
		default_factory=DifferentialEvolutionStrategyConfiguration
	)

	def __post_init__(self):
		if isinstance(self.continuous_optimization_method, str):
			try:
				self.continuous_optimization_method = ContinuousOptimizationMethod[self.continuous_optimization_method]
			except KeyError:
				raise ConfigurationError(f"Unknown continuous optimization method: {self.continuous_optimization_method}") from None
		else:
			self.continuous_optimization_method = ContinuousOptimizationMethod(self.continuous_optimization_method)
		if isinstance(self.cma_es, dict):
			self.cma_es = CmaEsStrategyConfiguration(**self.cma_es)
		if isinstance(self.differential_evolution, dict):
			self.differential_evolution = DifferentialEvolutionStrategyConfiguration(**self.differential_evolution)
		self.validate()

	def validate(self) -> None:
		"""Raise ConfigurationError for inconsistent options."""
		checks = [
			(self.population_size >= 2, f"Population size must be at least 2, but was {self.population_size}."),
			(self.generations > 0, f"Number of generations must be positive, but was {self.generations}."),
			(self.max_genome_age > 0, f"Maximum genome age must be positive, but was {self.max_genome_age}."),
			(0 <= self.population_mutant_ratio <= 1, f"Population mutant ratio must be in [0, 1], but was {self.population_mutant_ratio}."),
			(0 <= self.mutation_rate <= 1, f"Mutation rate must be in [0, 1], but was {self.mutation_rate}."),
			(0 < self.mutation_variance_percentage <= 1, f"Mutation variance percentage must be in (0, 1], but was {self.mutation_variance_percentage}."),
			(0 <= self.crossover_switch_probability <= 1, f"Crossover switch probability must be in [0, 1], but was {self.crossover_switch_probability}."),
			(self.max_repair_attempts >= 0, f"Maximum number of repair attempts must be nonnegative, but was {self.max_repair_attempts}."),
			(self.max_mini_tournament_size > 0, f"Mini tournament size must be positive, but was {self.max_mini_tournament_size}."),
			(0 < self.tournament_winner_percentage <= 1, f"Tournament winner percentage must be in (0, 1], but was {self.tournament_winner_percentage}."),
			(self.cpu_timeout > 0, f"CPU timeout must be positive, but was {self.cpu_timeout}."),
			(self.maximum_parallel_evaluations > 0, f"Number of parallel evaluations must be positive, but was {self.maximum_parallel_evaluations}."),
			(0 < self.start_number_instances <= self.end_number_instances,
				f"Instance numbers must satisfy 0 < start <= end, but were {self.start_number_instances} and {self.end_number_instances}."),
			(self.goal_generation >= 0, f"Goal generation must be nonnegative, but was {self.goal_generation}."),
			(self.max_gga_generations > 0, f"Maximum number of GGA generations must be positive, but was {self.max_gga_generations}."),
			(self.max_gga_generations_with_same_incumbent > 0,
				f"Maximum number of GGA generations with the same incumbent must be positive, but was {self.max_gga_generations_with_same_incumbent}."),
			(0 <= self.engineered_population_ratio <= 1, f"Engineered population ratio must be in [0, 1], but was {self.engineered_population_ratio}."),
		]
		for ok, message in checks:
			if not ok:
				raise ConfigurationError(message)

	@property
	def requires_genetic_engineering(self) -> bool:
		"""Whether a surrogate model has to be trained during GGA phases."""
		return self.train_model or self.engineered_population_ratio > 0 or self.enable_sexual_selection

	def to_dict(self) -> dict[str, Any]:
		data = asdict(self)
		data["continuous_optimization_method"] = self.continuous_optimization_method.name
		return data

	def to_yaml(self) -> str:
		"""Convert config to YAML string."""
		return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

	def save_yaml(self, filepath: str) -> None:
		"""Save config to YAML file."""
		path = Path(filepath)
		path.parent.mkdir(parents=True, exist_ok=True)
		with open(path, 'w') as f:
			f.write(self.to_yaml())

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'TunerConfiguration':
		known = {f.name for f in fields(cls)}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ConfigurationError(f"Unknown configuration keys: {unknown}")
		return cls(**data)

	@classmethod
	def from_yaml(cls, yaml_str: str) -> 'TunerConfiguration':
		"""Create config from YAML string."""
		data = yaml.safe_load(yaml_str) or {}
		return cls.from_dict(data)

	@classmethod
	def load_yaml(cls, filepath: str) -> 'TunerConfiguration':
		"""Load config from YAML file."""
		with open(filepath, 'r') as f:
			return cls.from_yaml(f.read())
