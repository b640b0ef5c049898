"""Explicit registry mapping model names to model factories."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from catkit.exceptions import ConfigurationError
from catkit.models.base import BaseItemModel
from catkit.models.dichotomous import (
    OneParameterLogistic,
    ThreeParameterLogistic,
    TwoParameterLogistic,
)
from catkit.models.polytomous import (
    GeneralizedGradedResponse,
    GeneralizedPartialCredit,
    GradedResponse,
    PartialCreditModel,
)
from catkit.models.trusted_region import TrustedRegion

logger = logging.getLogger(__name__)

ModelFactory = Callable[[], BaseItemModel]


class ModelRegistry:
    """Name-keyed collection of model factories.

    A registry is built once per process or calibration run and passed
    to the components that need models. Instances are created lazily and
    cached per registry, never globally.

    Examples
    --------
    >>> registry = ModelRegistry()
    >>> registry.register("1PL", OneParameterLogistic)
    >>> registry.get("1PL").model_name
    '1PL'
    """

    def __init__(self) -> None:
        self._factories: dict[str, ModelFactory] = {}
        self._instances: dict[str, BaseItemModel] = {}

    def register(self, name: str, factory: ModelFactory) -> None:
        if name in self._factories:
            raise ConfigurationError(f"Model '{name}' is already registered")
        self._factories[name] = factory

    def names(self) -> list[str]:
        """Registered model names in registration order."""
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    def create(self, name: str) -> BaseItemModel:
        """Build a fresh model instance."""
        if name not in self._factories:
            raise ConfigurationError(
                f"Unknown model '{name}'. Registered models: {', '.join(self.names())}"
            )
        return self._factories[name]()

    def get(self, name: str) -> BaseItemModel:
        """Shared model instance for ``name``."""
        if name not in self._instances:
            self._instances[name] = self.create(name)
        return self._instances[name]

    def resolve_order(self, sort_order: Iterable[str] | None = None) -> list[str]:
        """Validate a model sort order.

        Parameters
        ----------
        sort_order : iterable of str, optional
            Enabled models in order of preference. ``None`` enables every
            registered model in registration order.

        Raises
        ------
        ConfigurationError
            If the order names an unknown model or is empty.
        """
        if sort_order is None:
            order = self.names()
        else:
            order = list(dict.fromkeys(sort_order))
        unknown = [name for name in order if name not in self._factories]
        if unknown:
            raise ConfigurationError(f"Unknown model(s) in sort order: {unknown}")
        if not order:
            raise ConfigurationError("At least one model must be enabled")
        return order

    def __repr__(self) -> str:
        return f"ModelRegistry(models={self.names()})"


def default_registry(trusted_region: TrustedRegion | None = None) -> ModelRegistry:
    """Registry with the built-in 1PL, 2PL, 3PL, PCM, GPCM, GRM and GGRM models."""
    registry = ModelRegistry()
    for cls in (
        OneParameterLogistic,
        TwoParameterLogistic,
        ThreeParameterLogistic,
        PartialCreditModel,
        GeneralizedPartialCredit,
        GradedResponse,
        GeneralizedGradedResponse,
    ):
        registry.register(cls.model_name, _factory(cls, trusted_region))
    logger.debug("Built default registry with models %s", registry.names())
    return registry


def _factory(
    cls: type[BaseItemModel], trusted_region: TrustedRegion | None
) -> ModelFactory:
    return lambda: cls(trusted_region=trusted_region)
