# edgeguard/core/registry.py
from typing import Any, Dict, List, Optional, Tuple, Type
import logging

from core.matchers.base import IRequestMatcher
from core.matchers.dynamic_remote_ip import DynamicRemoteIPMatcher
from core.sources.base import IIPRangeSource
from core.sources.remote import CloudflareIPRangeSource, RemoteIPRangeSource
from core.sources.static import StaticIPRangeSource
from utils.exceptions import ConfigurationError

logger = logging.getLogger(f"edgeguard.{__name__}")


class ModuleRegistry:
    """
    Maps module names to the classes implementing them, so configuration can
    refer to a module by name (e.g. `source: cloudflare`).
    Registries are built explicitly at startup and passed to provisioning.
    """
    def __init__(self, namespace: str, base_class: Type = object):
        self.namespace = namespace
        self.base_class = base_class
        self._modules: Dict[str, Type] = {}

    def register(self, name: str, module_class: Type) -> None:
        """
        Registers a module class under a name.
        Args:
            name (str): The unique name of the module within the namespace (e.g. "cloudflare").
            module_class (Type): The class to instantiate for this name.
        """
        if not issubclass(module_class, self.base_class):
            raise TypeError(f"Module class {module_class.__name__} must inherit from {self.base_class.__name__}.")
        if name in self._modules:
            logger.warning(f"Warning: Module '{self.namespace}.{name}' already registered. Overwriting.")
        self._modules[name] = module_class
        logger.debug(f"Module '{self.namespace}.{name}' (class: {module_class.__name__}) registered.")

    def unregister(self, name: str) -> None:
        if name in self._modules:
            del self._modules[name]
            logger.debug(f"Module '{self.namespace}.{name}' unregistered.")
        else:
            logger.warning(f"Warning: Module '{self.namespace}.{name}' not found for unregistration.")

    def get_class(self, name: str) -> Optional[Type]:
        return self._modules.get(name)

    def names(self) -> List[str]:
        return sorted(self._modules)

    def __contains__(self, name: str) -> bool:
        return name in self._modules

    def create(self, name: str, config: Optional[Dict[str, Any]] = None) -> Any:
        """
        Instantiates the module registered under `name` with its configuration.
        Raises:
            ConfigurationError: If no module is registered under that name.
        """
        module_class = self.get_class(name)
        if module_class is None:
            known = ", ".join(self.names()) or "none"
            raise ConfigurationError(f"Unknown module '{self.namespace}.{name}' (registered: {known})")
        return module_class(config or {})


class SourceRegistry(ModuleRegistry):
    def __init__(self):
        super().__init__("ip_sources", IIPRangeSource)


class MatcherRegistry(ModuleRegistry):
    def __init__(self):
        super().__init__("matchers", IRequestMatcher)


def build_default_registries() -> Tuple[SourceRegistry, MatcherRegistry]:
    """Builds the registries with every built-in source and matcher."""
    sources = SourceRegistry()
    for source_class in (CloudflareIPRangeSource, RemoteIPRangeSource, StaticIPRangeSource):
        sources.register(source_class.NAME, source_class)

    matchers = MatcherRegistry()
    matchers.register(DynamicRemoteIPMatcher.NAME, DynamicRemoteIPMatcher)
    return sources, matchers
