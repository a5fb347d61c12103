"""
Population update strategy interface.

A tuning run is a sequence of phases. Each phase is driven by one strategy
(GGA, CMA-ES or JADE) that takes over the population, iterates until it
decides to stop, hands a population back and names the strategy of the next
phase.

Life cycle per phase:
	strategy.initialize(population, incumbent, instances)
	while not strategy.has_terminated():
		strategy.perform_iteration(generation, instances)
		incumbent = strategy.find_incumbent_genome()
	population = strategy.finish_phase(population)
	strategy = strategies[strategy.next_strategy(strategies)]
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from algotune.config import TunerConfiguration
from algotune.errors import ConfigurationError
from algotune.evaluation.genome_stats import Instance
from algotune.evaluation.incumbent import IncumbentGenomeWrapper
from algotune.genomes.population import Population

if TYPE_CHECKING:
	from algotune.strategies.genetic_engineering import GeneticEngineering


class PopulationUpdateStrategy(ABC):
	"""One phase of the tuner."""

	def __init__(self, configuration: TunerConfiguration):
		self.configuration = configuration

	@abstractmethod
	def initialize(
		self,
		base_population: Population,
		incumbent: Optional[IncumbentGenomeWrapper],
		instances: Sequence[Instance],
	) -> None:
		"""Start a phase on `base_population`."""
		...

	@abstractmethod
	def perform_iteration(self, generation: int, instances: Sequence[Instance]) -> None:
		...

	@abstractmethod
	def find_incumbent_genome(self) -> IncumbentGenomeWrapper:
		"""Best genome of the most recent iteration."""
		...

	@abstractmethod
	def finish_phase(self, base_population: Population) -> Population:
		"""Population to hand to the next phase."""
		...

	@abstractmethod
	def next_strategy(self, strategies: Sequence['PopulationUpdateStrategy']) -> int:
		"""Index of the strategy that runs the next phase."""
		...

	@abstractmethod
	def has_terminated(self) -> bool:
		...

	@abstractmethod
	def dump_status(self) -> None:
		"""Write the strategy state into the status directory."""
		...

	@abstractmethod
	def use_status_dump(self, genetic_engineering: 'GeneticEngineering') -> None:
		"""Restore the state written by dump_status."""
		...

	def log_population(self) -> None:
		pass

	def status_path(self, file_name: str) -> Path:
		if self.configuration.status_directory is None:
			raise ConfigurationError("Reading or writing status files requires a status directory.")
		return Path(self.configuration.status_directory) / file_name


def find_strategy_index(strategies: Sequence[PopulationUpdateStrategy], strategy_type: type) -> int:
	"""Index of the first strategy of exactly `strategy_type`."""
	for index, strategy in enumerate(strategies):
		if type(strategy) is strategy_type:
			return index
	raise ConfigurationError(f"No strategy of type {strategy_type.__name__} is available.")
