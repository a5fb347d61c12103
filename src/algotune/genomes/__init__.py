"""Genomes, genome operators and the population."""

from algotune.genomes.genome import Genome, ImmutableGenome
from algotune.genomes.transformation import TolerantGenomeTransformation
from algotune.genomes.builder import GenomeBuilder
from algotune.genomes.population import Population, AgeRemovals

__all__ = [
	'Genome', 'ImmutableGenome',
	'TolerantGenomeTransformation',
	'GenomeBuilder',
	'Population', 'AgeRemovals',
]
