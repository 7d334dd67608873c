# edgeguard/core/context.py
import logging
import threading
from typing import Any, Dict, List, Optional

from core.matchers.base import IRequestMatcher
from core.registry import ModuleRegistry
from core.sources.base import IIPRangeSource
from utils.exceptions import ConfigurationError

logger = logging.getLogger(f"edgeguard.{__name__}")


class ProvisionContext:
    """
    What the host hands to modules while provisioning them: the shutdown
    signal, loggers, and the registries used to resolve nested modules by name.

    Every module loaded through the context is closed when the context is
    cancelled.
    """
    def __init__(self,
                 sources: ModuleRegistry,
                 matchers: Optional[ModuleRegistry] = None,
                 done: Optional[threading.Event] = None,
                 logger_prefix: str = "edgeguard"):
        self.sources = sources
        self.matchers = matchers
        self.done: threading.Event = done or threading.Event()
        self._logger_prefix = logger_prefix
        self._modules: List[Any] = []
        self._lock = threading.Lock()

    def logger(self, name: str) -> logging.Logger:
        return logging.getLogger(f"{self._logger_prefix}.{name}")

    def load_source(self, source_config: Dict[str, Any]) -> IIPRangeSource:
        """
        Instantiates and provisions the source named by the `source` key of
        `source_config`; the remaining keys configure it.
        Raises:
            ConfigurationError: Missing or unknown name, invalid options, or a
                registered module that is not an IP range source.
        """
        if not isinstance(source_config, dict):
            raise ConfigurationError(f"IP range source config must be a mapping, got {type(source_config).__name__}")
        name = source_config.get("source")
        if not name:
            raise ConfigurationError("IP range source config is missing the 'source' key")

        module = self.sources.create(name, source_config)
        if not isinstance(module, IIPRangeSource):
            raise ConfigurationError(f"Module '{self.sources.namespace}.{name}' is not an IP range source")
        self._provision(module)
        logger.info(f"IP range source '{name}' provisioned.")
        return module

    def load_matcher(self, name: str, config: Optional[Dict[str, Any]] = None) -> IRequestMatcher:
        """Instantiates and provisions the matcher registered under `name`."""
        if self.matchers is None:
            raise ConfigurationError("No matcher registry available")
        module = self.matchers.create(name, config or {})
        if not isinstance(module, IRequestMatcher):
            raise ConfigurationError(f"Module '{self.matchers.namespace}.{name}' is not a request matcher")
        self._provision(module)
        logger.info(f"Matcher '{name}' provisioned.")
        return module

    def _provision(self, module: Any) -> None:
        if self.done.is_set():
            raise ConfigurationError("Provisioning context already cancelled")
        # tracked before provisioning so cancel() also reaches half-provisioned modules
        with self._lock:
            self._modules.append(module)
        try:
            module.provision(self)
        except Exception:
            with self._lock:
                self._modules.remove(module)
            module.close()
            raise

    def cancel(self) -> None:
        """Signals shutdown and closes every loaded module, most recent first."""
        self.done.set()
        with self._lock:
            modules = list(reversed(self._modules))
            self._modules.clear()
        for module in modules:
            try:
                module.close()
            except Exception as e:
                logger.error(f"Error closing module {type(module).__name__}: {e}")
        logger.info("Provisioning context cancelled.")
