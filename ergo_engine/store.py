"""
Store collaborator interface.

The engine only appends and reads settings; durable storage lives in the host
service. Writes from the hot path go through ``fire_and_forget`` so a failing
store never reaches the frame pipeline.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("ergo.engine.store")


class MetricStore(ABC):
    """Abstract metric / settings / break-record store"""

    @abstractmethod
    def append(self, metric_type: str, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def get_setting(self, key: str) -> Any:
        pass

    @abstractmethod
    def set_setting(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def append_break_record(self, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_break_history(self, days: int) -> List[Dict[str, Any]]:
        pass


def fire_and_forget(action: Callable[..., Any], *args, description: str = "store write", **kwargs) -> bool:
    """Run a store call; log and swallow failures. Returns True on success."""
    try:
        action(*args, **kwargs)
        return True
    except Exception as e:
        logger.warning(f"{description} failed, discarding: {e}")
        return False


def read_setting(store: Optional[MetricStore], key: str) -> Any:
    """Best-effort settings read; None when missing or the store fails."""
    if store is None:
        return None
    try:
        return store.get_setting(key)
    except Exception as e:
        logger.warning(f"Failed to read setting {key}: {e}")
        return None
