"""Lifecycle interface for long-running parts of the archiver."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """Something the app starts at boot and stops at shutdown, in order."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release resources; must be safe to call when start() never ran."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
