"""
Strategy Factory

Creates the population update strategies of a tuning run and checks up
front that the configured phase switching can be served.

Usage:
	strategies = StrategyFactory.create(config, tree, builder, coordinator, rng)
	gga = strategies[0]
"""

from typing import Optional

from algotune.config import ContinuousOptimizationMethod, TunerConfiguration
from algotune.errors import ConfigurationError
from algotune.evaluation.coordinator import EvaluationCoordinator
from algotune.genomes.builder import GenomeBuilder
from algotune.parameters.tree import ParameterTree
from algotune.randomizer import Randomizer
from algotune.strategies.base import PopulationUpdateStrategy
from algotune.strategies.covariance_matrix_adaptation import create_covariance_matrix_adaptation_strategy
from algotune.strategies.differential_evolution import DifferentialEvolutionStrategy
from algotune.strategies.genetic_engineering import GeneticEngineering, NoGeneticEngineering
from algotune.strategies.gga import GgaStrategy


class StrategyFactory:
	"""Builds the strategy list; GGA always comes first."""

	@staticmethod
	def validate(configuration: TunerConfiguration, genetic_engineering: Optional[GeneticEngineering]) -> None:
		"""
		Raises:
			ConfigurationError: If the continuous method is not mapped to a
				strategy, or the configuration needs a surrogate model but none is given
		"""
		method = configuration.continuous_optimization_method
		if method not in (ContinuousOptimizationMethod.NONE, ContinuousOptimizationMethod.JADE, ContinuousOptimizationMethod.CMA_ES):
			raise ConfigurationError(f"Continuous optimization method {method!r} is not mapped to a strategy.")
		if configuration.requires_genetic_engineering and (
			genetic_engineering is None or isinstance(genetic_engineering, NoGeneticEngineering)
		):
			raise ConfigurationError(
				"Model training, engineered genomes or sexual selection are enabled, but no surrogate model was given."
			)

	@staticmethod
	def create(
		configuration: TunerConfiguration,
		tree: ParameterTree,
		builder: GenomeBuilder,
		coordinator: EvaluationCoordinator,
		rng: Randomizer,
		genetic_engineering: Optional[GeneticEngineering] = None,
	) -> list[PopulationUpdateStrategy]:
		"""
		Create GGA and the continuous strategy it switches to.

		Returns:
			Strategies, GGA at index 0
		"""
		StrategyFactory.validate(configuration, genetic_engineering)
		genetic_engineering = genetic_engineering or NoGeneticEngineering()
		strategies: list[PopulationUpdateStrategy] = [
			GgaStrategy(configuration, tree, builder, coordinator, genetic_engineering, rng)
		]
		match configuration.continuous_optimization_method:
			case ContinuousOptimizationMethod.JADE:
				strategies.append(DifferentialEvolutionStrategy(configuration, tree, builder, coordinator, rng))
			case ContinuousOptimizationMethod.CMA_ES:
				strategies.append(create_covariance_matrix_adaptation_strategy(configuration, tree, builder, coordinator, rng))
			case _:
				pass
		return strategies
