# edgeguard/core/sources/base.py
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError

from schemas.sources import SourceStatus
from utils.exceptions import ConfigurationError
from utils.ip import Prefix

if TYPE_CHECKING:
    from core.context import ProvisionContext


class IIPRangeSource(ABC):
    """
    Interface for IP range sources.
    A source serves the current snapshot of trusted prefixes. Request
    handlers only ever call `get_ranges`, which must be safe to call from
    many threads at once and must never perform network I/O.
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
            raise ConfigurationError(f"Invalid configuration for IP range source '{cls.NAME}': {e}") from e

    @abstractmethod
    def provision(self, ctx: "ProvisionContext") -> None:
        """
        Prepares the source for use. Called once by the host before the
        first `get_ranges` call.
        """
        raise NotImplementedError

    @abstractmethod
    def get_ranges(self, request: Any = None) -> Sequence[Prefix]:
        """
        Returns the current snapshot of prefixes.
        Args:
            request (Any): The request being matched, may be None.
        Returns:
            Sequence[Prefix]: A consistent, possibly stale snapshot. Empty means no ranges known.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Stops background work. Safe to call more than once."""

    def get_status(self) -> SourceStatus:
        return SourceStatus(name=self.NAME, prefix_count=len(self.get_ranges()))
