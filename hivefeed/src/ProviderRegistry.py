"""ProviderRegistry: Resolve configured price providers into live fetchers.

Providers are described by inert :class:`ProviderDescriptor` records. The
descriptors come from three places, lowest precedence first:

    1. ``STATIC_PROVIDERS`` (the built-in list below)
    2. ``ProviderRegistry.register_descriptor()`` calls
    3. The ``PRICE_PROVIDER_MODULES`` environment variable (JSON list)

Names are case-insensitive; a later source replaces an earlier descriptor
with the same name. A descriptor is only turned into a fetcher instance the
first time its price is requested.

.. code-block:: python

    >>> registry = ProviderRegistry(environ={})
    >>> registry.get_available_providers()
    ['binance', 'bitget', 'huobi', 'mexc', 'probit']
    >>> provider = registry.get_provider("Binance")
    >>> provider.exchange_name
    'Binance'

Override example::

    PRICE_PROVIDER_MODULES='[{"name": "mexc", "locator": "hivefeed.src.fetchers.mexc:MEXCFetcher", "weight": 2.0}]'
"""

from __future__ import annotations

import importlib
import json
import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .errors import ConfigurationError
from .fetchers.base import BaseFetcher

logger = logging.getLogger(__name__)

ENV_PROVIDER_MODULES = "PRICE_PROVIDER_MODULES"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Inert configuration record for one price provider.

    :ivar name: Provider name (case-insensitive key).
    :ivar locator: Import locator of the fetcher class, "module:ClassName".
    :ivar enabled: Whether the provider takes part in aggregation.
    :ivar weight: Weight used by the weighted average.
    :ivar timeout: Optional per-request timeout override in seconds.
    :ivar max_retries: Optional retry budget override.
    """

    name: str
    locator: str
    enabled: bool = True
    weight: float = 1.0
    timeout: float | None = None
    max_retries: int | None = None

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderDescriptor:
        """Build a descriptor from a JSON object.

        :raises ValueError: If required fields are missing or mistyped.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Provider descriptor must be an object, got {data!r}")
        name = data.get("name")
        locator = data.get("locator")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Provider descriptor needs a 'name': {data!r}")
        if not isinstance(locator, str) or ":" not in locator:
            raise ValueError(
                f"Provider descriptor '{name}' needs a 'module:Class' locator"
            )

        timeout = data.get("timeout")
        max_retries = data.get("max_retries")
        weight = float(data.get("weight", 1.0))
        if not math.isfinite(weight) or weight < 0:
            raise ValueError(f"Provider '{name}' weight must be a finite non-negative number")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"Provider '{name}' 'enabled' must be true or false")
        return cls(
            name=name,
            locator=locator,
            enabled=enabled,
            weight=weight,
            timeout=float(timeout) if timeout is not None else None,
            max_retries=int(max_retries) if max_retries is not None else None,
        )


def _static(name: str, class_name: str) -> ProviderDescriptor:
    return ProviderDescriptor(
        name=name, locator=f"hivefeed.src.fetchers.{name}:{class_name}"
    )


STATIC_PROVIDERS: tuple[ProviderDescriptor, ...] = (
    _static("binance", "BinanceFetcher"),
    _static("bitget", "BitgetFetcher"),
    _static("huobi", "HuobiFetcher"),
    _static("mexc", "MEXCFetcher"),
    _static("probit", "ProbitFetcher"),
)


def load_descriptor_overrides(environ: Mapping[str, str]) -> list[ProviderDescriptor]:
    """Parse the ``PRICE_PROVIDER_MODULES`` override.

    A malformed value is logged and ignored as a whole.

    :param environ: Environment mapping to read from.
    :returns: Parsed descriptors, possibly empty.
    """
    raw = environ.get(ENV_PROVIDER_MODULES)
    if not raw or not raw.strip():
        return []
    try:
        items = json.loads(raw)
        if not isinstance(items, list):
            raise ValueError("expected a JSON list")
        return [ProviderDescriptor.from_dict(item) for item in items]
    except (ValueError, TypeError) as e:
        logger.warning(f"Invalid {ENV_PROVIDER_MODULES} format ({e}). Ignoring.")
        return []


def load_fetcher_class(descriptor: ProviderDescriptor) -> type[BaseFetcher]:
    """Import the fetcher class a descriptor points at.

    :raises ConfigurationError: PROVIDER_LOAD_FAILED if the module or class
        cannot be found, or is not a BaseFetcher.
    """
    module_name, _, attr = descriptor.locator.partition(":")
    try:
        module = importlib.import_module(module_name)
        cls = getattr(module, attr)
    except (ImportError, AttributeError, ValueError) as e:
        raise ConfigurationError(
            f"Provider export not found for {descriptor.name} at {descriptor.locator}",
            ConfigurationError.PROVIDER_LOAD_FAILED,
            operation="provider_load",
            exchange_name=descriptor.name,
            cause=e,
        ) from e

    if not (isinstance(cls, type) and issubclass(cls, BaseFetcher)):
        raise ConfigurationError(
            f"{descriptor.locator} for provider {descriptor.name} is not a price fetcher",
            ConfigurationError.PROVIDER_LOAD_FAILED,
            operation="provider_load",
            exchange_name=descriptor.name,
        )
    return cls


class LazyFetcher(BaseFetcher):
    """Stand-in that constructs the real fetcher on first use.

    :ivar descriptor: Descriptor the real fetcher is built from.
    """

    def __init__(self, descriptor: ProviderDescriptor) -> None:
        super().__init__()
        self.descriptor = descriptor
        self._real: BaseFetcher | None = None
        self._display_name: str | None = None

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.descriptor.key

    @property
    def exchange_name(self) -> str:  # type: ignore[override]
        """Display name of the fetcher class, read without constructing it."""
        if self._real is not None:
            return self._real.exchange_name
        if self._display_name is None:
            try:
                cls = load_fetcher_class(self.descriptor)
            except ConfigurationError:
                return self.descriptor.key
            self._display_name = cls.exchange_name or self.descriptor.key
        return self._display_name

    @property
    def is_materialized(self) -> bool:
        return self._real is not None

    def materialize(self) -> BaseFetcher:
        """Build (once) and return the real fetcher."""
        if self._real is None:
            cls = load_fetcher_class(self.descriptor)
            instance = cls()
            instance.configure(
                request_timeout=self.descriptor.timeout,
                retry_attempts=self.descriptor.max_retries,
                max_retries=self.descriptor.max_retries,
            )
            logger.debug(f"[{self.descriptor.key}] Materialized {self.descriptor.locator}")
            self._real = instance
        return self._real

    async def get_price(self) -> float:
        return await self.materialize().get_price()


class ProviderRegistry:
    """Resolves provider descriptors and hands out fetchers.

    :ivar environ: Environment mapping consulted for overrides.
    """

    def __init__(
        self,
        static_descriptors: tuple[ProviderDescriptor, ...] | list[ProviderDescriptor] = STATIC_PROVIDERS,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the registry.

        :param static_descriptors: Lowest-precedence descriptor list.
        :param environ: Environment mapping (default: ``os.environ``).
        """
        self._static = list(static_descriptors)
        self.environ = os.environ if environ is None else environ
        self._custom_descriptors: dict[str, ProviderDescriptor] = {}
        self._custom_factories: dict[str, Callable[[], BaseFetcher]] = {}
        self._providers: dict[str, BaseFetcher] = {}
        self._overrides_raw: str | None = None
        self._overrides: list[ProviderDescriptor] = []

    def register_descriptor(self, descriptor: ProviderDescriptor) -> None:
        """Register a descriptor, replacing a static one with the same name."""
        self._custom_descriptors[descriptor.key] = descriptor
        self._providers.pop(descriptor.key, None)

    def register_provider(self, name: str, factory: Callable[[], BaseFetcher]) -> None:
        """Register a factory for a provider that has no descriptor."""
        self._custom_factories[name.lower()] = factory
        self._providers.pop(name.lower(), None)

    def _load_overrides(self) -> list[ProviderDescriptor]:
        # Parsed once per distinct raw value.
        raw = self.environ.get(ENV_PROVIDER_MODULES)
        if raw != self._overrides_raw:
            self._overrides_raw = raw
            self._overrides = load_descriptor_overrides(self.environ)
        return self._overrides

    def get_descriptors(self) -> dict[str, ProviderDescriptor]:
        """Merge all descriptor sources in precedence order.

        :returns: Ordered mapping of key to winning descriptor.
        """
        merged: dict[str, ProviderDescriptor] = {}
        for d in self._static:
            merged[d.key] = d
        for d in self._custom_descriptors.values():
            merged[d.key] = d
        for d in self._load_overrides():
            merged[d.key] = d
        return merged

    def get_available_providers(self) -> list[str]:
        """Names of all known providers, descriptors first."""
        names = list(self.get_descriptors())
        names.extend(k for k in self._custom_factories if k not in names)
        return names

    def get_provider(self, name: str) -> BaseFetcher | None:
        """Get the fetcher for a provider name.

        Descriptor-backed providers are returned as cached
        :class:`LazyFetcher` instances.

        :param name: Provider name (case-insensitive).
        :returns: Fetcher, or None if the name is unknown.
        """
        key = name.lower()
        descriptor = self.get_descriptors().get(key)

        cached = self._providers.get(key)
        if cached is not None:
            if not isinstance(cached, LazyFetcher) or cached.descriptor == descriptor:
                return cached

        provider: BaseFetcher
        if descriptor is not None:
            provider = LazyFetcher(descriptor)
        elif key in self._custom_factories:
            provider = self._custom_factories[key]()
        else:
            return None

        self._providers[key] = provider
        return provider

    def require_provider(self, name: str) -> BaseFetcher:
        """Like :meth:`get_provider` but raises PROVIDER_NOT_FOUND."""
        provider = self.get_provider(name)
        if provider is None:
            raise ConfigurationError(
                f"Provider '{name}' not found. Available: "
                f"{', '.join(self.get_available_providers())}",
                ConfigurationError.PROVIDER_NOT_FOUND,
                operation="provider_lookup",
                exchange_name=name,
            )
        return provider

    def get_active_descriptors(self) -> list[ProviderDescriptor]:
        """Enabled descriptors, in resolution order."""
        return [d for d in self.get_descriptors().values() if d.enabled]

    def get_weights(self) -> dict[str, float]:
        """Weight per enabled provider key."""
        return {d.key: d.weight for d in self.get_active_descriptors()}

    def create_providers(self) -> list[BaseFetcher]:
        """Fetchers for every enabled provider.

        Descriptor-backed providers come first, followed by providers
        registered through :meth:`register_provider`.

        :returns: Ordered list of (lazy) fetchers.
        :raises ConfigurationError: NO_PROVIDERS if none could be resolved.
        """
        providers: list[BaseFetcher] = []
        for descriptor in self.get_active_descriptors():
            provider = self.get_provider(descriptor.name)
            if provider is None:
                logger.warning(f"Provider '{descriptor.name}' not found. Skipping.")
                continue
            providers.append(provider)

        descriptors = self.get_descriptors()
        for key in self._custom_factories:
            if key not in descriptors:
                providers.append(self.get_provider(key))

        if not providers:
            raise ConfigurationError(
                "No valid providers found in configuration",
                ConfigurationError.NO_PROVIDERS,
                operation="provider_resolution",
            )
        return providers
