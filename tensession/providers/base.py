from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


Listener = Callable[..., None]


class EIP1193Provider(ABC):
    """Request-style provider interface (EIP-1193 shaped)"""

    name: str = "eip1193"

    @abstractmethod
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Perform a JSON-RPC call and return its ``result``"""
        pass

    def on(self, event: str, listener: Listener) -> None:
        """Subscribe to a provider event. Optional: providers without events ignore it."""
        return None

    def remove_listener(self, event: str, listener: Listener) -> None:
        return None

    @property
    def supports_events(self) -> bool:
        return False


class EventedProvider(EIP1193Provider):
    """Provider that keeps a local listener registry and can emit events itself"""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    @property
    def supports_events(self) -> bool:
        return True

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener(*args)
