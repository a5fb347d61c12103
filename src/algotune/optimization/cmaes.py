"""
Covariance matrix adaptation evolution strategy (CMA-ES).

The optimizer samples lambda search points from N(mean, sigma^2 C), lets an
injected sorter rank them, moves the mean towards the weighted best mu
points, and adapts sigma (cumulative step-size adaptation) and C (rank-one
plus rank-mu update with negative weights). Vectors and matrices are float64
torch tensors; the eigen decomposition comes from torch.linalg.eigh.

Usage:
	cmaes = CmaEs(sorter, lambda values: BoundedSearchPoint(values, lower, upper), rng)
	cmaes.initialize(CmaEsConfiguration(10, mean, 3.0), [MaxIterations(20)])
	while not cmaes.any_termination_criterion_met():
		best_first = cmaes.next_generation()
"""

import math
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

import torch

from algotune.errors import PreconditionViolation
from algotune.logger import TunerLogger
from algotune.optimization.search_point import SearchPoint, SearchPointSorter, as_vector
from algotune.optimization.termination import TerminationCriterion, criterion_from_dict
from algotune.randomizer import Randomizer
from algotune.serialization import Serializable, tensor_from_list, tensor_to_list

P = TypeVar('P', bound=SearchPoint)


class CmaEsConfiguration:
	"""
	Population size, initial distribution and the derived strategy parameters.

	Args:
		population_size: Number of points sampled per generation (lambda >= 2)
		initial_distribution_mean: Start mean, defines the search space dimension
		initial_step_size: Start sigma (> 0)
	"""

	def __init__(self, population_size: int, initial_distribution_mean, initial_step_size: float):
		if population_size < 2:
			raise ValueError(f"Population needs to consist of at least 2 search points, but size was {population_size}.")
		if initial_distribution_mean is None:
			raise PreconditionViolation("Initial distribution mean is required")
		if initial_step_size <= 0:
			raise ValueError(f"Step size must be positive, but was {initial_step_size}.")

		self._initial_distribution_mean = as_vector(initial_distribution_mean)
		self.search_space_dimension = self._initial_distribution_mean.shape[0]
		self.population_size = population_size
		self.parent_number = population_size // 2
		self.initial_step_size = float(initial_step_size)

		n = self.search_space_dimension
		raw = [math.log((population_size + 1) / 2) - math.log(i) for i in range(1, population_size + 1)]
		parents = raw[:self.parent_number]
		self.variance_effective_selection_mass = sum(parents) ** 2 / sum(w * w for w in parents)
		mu_eff = self.variance_effective_selection_mass

		self.step_size_control_learning_rate = (mu_eff + 2) / (n + mu_eff + 5)
		self.step_size_control_damping = (
			1 + 2 * max(0.0, math.sqrt((mu_eff - 1) / (n + 1)) - 1) + self.step_size_control_learning_rate
		)

		self.cumulation_learning_rate = (4 + mu_eff / n) / (n + 4 + 2 * mu_eff / n)
		alpha = 2
		self.rank_one_update_learning_rate = alpha / ((n + 1.3) ** 2 + mu_eff)
		unbound_rank_mu = alpha * ((mu_eff - 2 + 1 / mu_eff) / ((n + 2) ** 2 + alpha * mu_eff / 2))
		self.rank_mu_update_learning_rate = min(1 - self.rank_one_update_learning_rate, unbound_rank_mu)

		positive_scale = 1 / sum(w for w in raw if w > 0)
		negative_scale = self._negative_weight_scaling_constant(raw)
		self.weights = [positive_scale * w if w >= 0 else negative_scale * w for w in raw]

	def _negative_weight_scaling_constant(self, raw: list[float]) -> float:
		not_selected = raw[self.parent_number:]
		negative_sum = -sum(w for w in raw if w < 0)
		if negative_sum == 0:
			return 0.0
		mu_eff_not_selected = sum(not_selected) ** 2 / sum(w * w for w in not_selected)
		c1 = self.rank_one_update_learning_rate
		c_mu = self.rank_mu_update_learning_rate
		# no decay on C
		prevent_decay = 1 + c1 / c_mu if c_mu > 0 else math.inf
		adapt_weights = 1 + 2 * mu_eff_not_selected / (self.variance_effective_selection_mass + 2)
		# keeps C positive definite
		bound = (1 - c1 - c_mu) / (self.search_space_dimension * c_mu) if c_mu > 0 else math.inf
		return min(prevent_decay, adapt_weights, bound) / negative_sum

	@property
	def initial_distribution_mean(self) -> torch.Tensor:
		return self._initial_distribution_mean.clone()

	def compute_expected_conjugate_evolution_path_length(self) -> float:
		"""E||N(0, I)|| = sqrt(2) Gamma((n + 1) / 2) / Gamma(n / 2)."""
		n = self.search_space_dimension
		return math.sqrt(2) * math.exp(math.lgamma((n + 1) / 2) - math.lgamma(n / 2))

	def to_dict(self) -> dict[str, Any]:
		return {
			"population_size": self.population_size,
			"initial_distribution_mean": self._initial_distribution_mean.tolist(),
			"initial_step_size": self.initial_step_size,
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'CmaEsConfiguration':
		return cls(data["population_size"], data["initial_distribution_mean"], data["initial_step_size"])


class CmaEsElements:
	"""Snapshot of the CMA-ES state handed to termination criteria and status dumps."""

	def __init__(
		self,
		configuration: Optional[CmaEsConfiguration] = None,
		generation: int = 0,
		distribution_mean: Optional[torch.Tensor] = None,
		step_size: float = 0.0,
		covariances: Optional[torch.Tensor] = None,
		covariances_decomposition: Optional[tuple[torch.Tensor, torch.Tensor]] = None,
		evolution_path: Optional[torch.Tensor] = None,
		conjugate_evolution_path: Optional[torch.Tensor] = None,
	):
		if generation < 0:
			raise ValueError(f"Generation must be nonnegative, but was {generation}.")
		if step_size < 0:
			raise ValueError(f"Step size must be nonnegative, but was {step_size}.")
		self.configuration = configuration
		self.generation = generation
		self.distribution_mean = _clone(distribution_mean)
		self.step_size = float(step_size)
		self.covariances = _clone(covariances)
		self.eigenvalues = None
		self.eigenvectors = None
		if covariances_decomposition is not None:
			self.eigenvalues = _clone(covariances_decomposition[0])
			self.eigenvectors = _clone(covariances_decomposition[1])
		self.evolution_path = _clone(evolution_path)
		self.conjugate_evolution_path = _clone(conjugate_evolution_path)

	def is_completely_specified(self) -> bool:
		return all(
			field is not None
			for field in (
				self.configuration, self.distribution_mean, self.covariances, self.eigenvalues,
				self.eigenvectors, self.evolution_path, self.conjugate_evolution_path,
			)
		)

	def to_dict(self) -> dict[str, Any]:
		return {
			"configuration": None if self.configuration is None else self.configuration.to_dict(),
			"generation": self.generation,
			"distribution_mean": tensor_to_list(self.distribution_mean),
			"step_size": self.step_size,
			"covariances": tensor_to_list(self.covariances),
			"evolution_path": tensor_to_list(self.evolution_path),
			"conjugate_evolution_path": tensor_to_list(self.conjugate_evolution_path),
		}

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> 'CmaEsElements':
		covariances = tensor_from_list(data.get("covariances"))
		configuration = data.get("configuration")
		return cls(
			configuration=None if configuration is None else CmaEsConfiguration.from_dict(configuration),
			generation=data["generation"],
			distribution_mean=tensor_from_list(data.get("distribution_mean")),
			step_size=data["step_size"],
			covariances=covariances,
			covariances_decomposition=None if covariances is None else torch.linalg.eigh(covariances),
			evolution_path=tensor_from_list(data.get("evolution_path")),
			conjugate_evolution_path=tensor_from_list(data.get("conjugate_evolution_path")),
		)


def _clone(tensor: Optional[torch.Tensor]) -> Optional[torch.Tensor]:
	return None if tensor is None else tensor.clone()


class CmaEsStatus(Serializable):
	"""Termination criteria plus the complete CMA-ES state."""

	FILE_NAME = "status.cmaes.json"

	def __init__(self, termination_criteria: Sequence[TerminationCriterion], data: CmaEsElements):
		if data is None:
			raise PreconditionViolation("CMA-ES status needs the optimizer state")
		self.termination_criteria = list(termination_criteria)
		self.data = data

	def serialize(self) -> dict[str, Any]:
		return {
			"termination_criteria": [criterion.to_dict() for criterion in self.termination_criteria],
			"data": self.data.to_dict(),
		}

	@classmethod
	def deserialize(cls, data: dict[str, Any]) -> 'CmaEsStatus':
		return cls(
			[criterion_from_dict(c) for c in data["termination_criteria"]],
			CmaEsElements.from_dict(data["data"]),
		)


class CmaEs(Generic[P]):
	"""
	CMA-ES over search points produced by `search_point_factory`.

	Args:
		sorter: Ranks search points, best first
		search_point_factory: Turns a sampled float64 vector into a search point
		rng: Random number handle for sampling
		logger: Component logger (default: TunerLogger("CmaEs"))
	"""

	def __init__(
		self,
		sorter: SearchPointSorter[P],
		search_point_factory: Callable[[torch.Tensor], P],
		rng: Randomizer,
		logger: Optional[TunerLogger] = None,
	):
		if sorter is None or search_point_factory is None:
			raise PreconditionViolation("CMA-ES needs a sorter and a search point factory")
		self._sorter = sorter
		self._search_point_factory = search_point_factory
		self._rng = rng
		self._log = logger or TunerLogger("CmaEs")

		self._termination_criteria: list[TerminationCriterion] = []
		self._configuration: Optional[CmaEsConfiguration] = None
		self._generation = 0
		self._distribution_mean: Optional[torch.Tensor] = None
		self._step_size = 0.0
		self._covariances: Optional[torch.Tensor] = None
		self._eigenvalues: Optional[torch.Tensor] = None
		self._eigenvectors: Optional[torch.Tensor] = None
		self._evolution_path: Optional[torch.Tensor] = None
		self._conjugate_evolution_path: Optional[torch.Tensor] = None

	@property
	def generation(self) -> int:
		return self._generation

	def initialize(self, configuration: CmaEsConfiguration, termination_criteria: Sequence[TerminationCriterion]) -> None:
		if configuration is None:
			raise PreconditionViolation("CMA-ES needs a configuration")
		criteria = list(termination_criteria)
		if not criteria:
			raise ValueError("There needs to be at least one termination criterion.")

		self._configuration = configuration
		self._termination_criteria = criteria
		n = configuration.search_space_dimension
		self._generation = 0
		self._covariances = torch.eye(n, dtype=torch.float64)
		self._decompose()
		self._evolution_path = torch.zeros(n, dtype=torch.float64)
		self._conjugate_evolution_path = torch.zeros(n, dtype=torch.float64)
		self._distribution_mean = configuration.initial_distribution_mean
		self._step_size = configuration.initial_step_size

	def next_generation(self) -> list[P]:
		"""Sample, rank and adapt once. Returns the sampled points, best first."""
		self._check_is_initialized("next_generation")
		self._generation += 1
		config = self._configuration

		# z ~ N(0, I), y = B D^(1/2) z, one column per sample
		random_directions = torch.stack(
			[self._rng.standard_normal_vector(config.search_space_dimension) for _ in range(config.population_size)],
			dim=1,
		)
		shift = self._eigenvectors * torch.sqrt(self._eigenvalues).unsqueeze(0)
		step_directions = shift @ random_directions

		points = [
			self._search_point_factory(self._distribution_mean + self._step_size * step_directions[:, k])
			for k in range(config.population_size)
		]
		order = list(self._sorter.sort(points))

		weights = torch.tensor(config.weights, dtype=torch.float64)
		parents = order[:config.parent_number]
		parent_weights = weights[:config.parent_number]
		unscaled_mean_step = step_directions[:, parents] @ parent_weights
		self._distribution_mean = self._distribution_mean + self._step_size * unscaled_mean_step

		self._update_step_size(random_directions[:, parents] @ parent_weights)
		self._adapt_covariances(unscaled_mean_step, random_directions, step_directions, order, weights)

		# enforce symmetry from the upper triangle
		upper = torch.triu(self._covariances)
		self._covariances = upper + torch.triu(self._covariances, diagonal=1).T
		self._decompose()

		return [points[index] for index in order]

	def any_termination_criterion_met(self) -> bool:
		self._check_is_initialized("any_termination_criterion_met")
		data = self.wrap_data()
		met = [criterion for criterion in self._termination_criteria if criterion.is_met(data)]
		if not met:
			return False
		self._log.info("CMA-ES: Termination criterion met.")
		for criterion in met:
			self._log.debug(type(criterion).__name__)
		return True

	def wrap_data(self) -> CmaEsElements:
		decomposition = None
		if self._eigenvalues is not None:
			decomposition = (self._eigenvalues, self._eigenvectors)
		return CmaEsElements(
			self._configuration,
			self._generation,
			self._distribution_mean,
			self._step_size,
			self._covariances,
			decomposition,
			self._evolution_path,
			self._conjugate_evolution_path,
		)

	def dump_status(self, path: str) -> None:
		CmaEsStatus(self._termination_criteria, self.wrap_data()).save(path)

	def use_status_dump(self, path: str) -> None:
		status, _ = CmaEsStatus.load(path)
		data = status.data
		self._termination_criteria = list(status.termination_criteria)
		self._configuration = data.configuration
		self._generation = data.generation
		self._distribution_mean = data.distribution_mean
		self._covariances = data.covariances
		self._eigenvalues = data.eigenvalues
		self._eigenvectors = data.eigenvectors
		self._step_size = data.step_size
		self._evolution_path = data.evolution_path
		self._conjugate_evolution_path = data.conjugate_evolution_path

	def _decompose(self) -> None:
		eigenvalues, eigenvectors = torch.linalg.eigh(self._covariances)
		# tiny negative eigenvalues are rounding noise of a PSD matrix
		self._eigenvalues = torch.clamp(eigenvalues, min=0.0)
		self._eigenvectors = eigenvectors

	def _update_step_size(self, mean_direction: torch.Tensor) -> None:
		config = self._configuration
		c_sigma = config.step_size_control_learning_rate
		normalization = math.sqrt(c_sigma * (2 - c_sigma) * config.variance_effective_selection_mass)
		self._conjugate_evolution_path = (
			(1 - c_sigma) * self._conjugate_evolution_path + normalization * (self._eigenvectors @ mean_direction)
		)
		path_length_ratio = float(torch.linalg.norm(self._conjugate_evolution_path)) / config.compute_expected_conjugate_evolution_path_length()
		self._step_size *= math.exp(c_sigma / config.step_size_control_damping * (path_length_ratio - 1))

	def _decide_stalling_constant(self) -> int:
		config = self._configuration
		maximum_path_length = (
			math.sqrt(1 - (1 - config.step_size_control_learning_rate) ** (2 * (self._generation + 1)))
			* (1.4 + 2 / (config.search_space_dimension + 1))
			* config.compute_expected_conjugate_evolution_path_length()
		)
		return 0 if float(torch.linalg.norm(self._conjugate_evolution_path)) >= maximum_path_length else 1

	def _adapt_covariances(
		self,
		unscaled_mean_step: torch.Tensor,
		random_directions: torch.Tensor,
		step_directions: torch.Tensor,
		order: list[int],
		weights: torch.Tensor,
	) -> None:
		config = self._configuration
		c_c = config.cumulation_learning_rate
		c_1 = config.rank_one_update_learning_rate
		c_mu = config.rank_mu_update_learning_rate

		normalization = math.sqrt(c_c * (2 - c_c) * config.variance_effective_selection_mass)
		stalling = self._decide_stalling_constant()
		self._evolution_path = (1 - c_c) * self._evolution_path + (stalling * normalization) * unscaled_mean_step
		rank_one_update = c_1 * torch.outer(self._evolution_path, self._evolution_path)

		rank_mu_update = torch.zeros_like(self._covariances)
		n = config.search_space_dimension
		for i, index in enumerate(order):
			weight = float(weights[i])
			if weight < 0:
				weight *= n / float(torch.linalg.norm(self._eigenvectors @ random_directions[:, index])) ** 2
			direction = step_directions[:, index]
			rank_mu_update += weight * torch.outer(direction, direction)
		rank_mu_update *= c_mu

		decay = 1 + c_1 * (1 - stalling) * c_c * (2 - c_c) - c_1 - c_mu * float(weights.sum())
		self._covariances = decay * self._covariances + rank_one_update + rank_mu_update

	def _check_is_initialized(self, member: str) -> None:
		if self._configuration is None:
			raise RuntimeError(f"Cannot execute {member} before calling initialize.")
