# edgeguard/core/matchers/base.py
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from utils.exceptions import ConfigurationError

if TYPE_CHECKING:
    from core.context import ProvisionContext


class IRequestMatcher(ABC):
    """
    Interface for request matchers: a boolean decision per request.
    `matches` is called concurrently from request handlers and must not raise
    on bad input.
    """

    NAME: str = ""
    CONFIG_MODEL: Optional[Type[BaseModel]] = None

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = self._load_config(config or {})

    @classmethod
    def _load_config(cls, config: Dict[str, Any]) -> Optional[BaseModel]:
        if cls.CONFIG_MODEL is None:
            return None
        try:
            return cls.CONFIG_MODEL.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration for matcher '{cls.NAME}': {e}") from e

    @abstractmethod
    def provision(self, ctx: "ProvisionContext") -> None:
        raise NotImplementedError

    @abstractmethod
    def matches(self, request: Any) -> bool:
        raise NotImplementedError

    def validate(self) -> List[str]:
        """Returns a list of likely misconfigurations, empty if none."""
        return []

    def close(self) -> None:
        """Releases resources held by the matcher itself."""
