"""Thread-safe in-memory registry of garden systems.

This is the only component allowed to hold garden system state. Records
are frozen pydantic models, so whatever a caller receives is a snapshot;
changes go through :meth:`SystemRegistry.upsert` or
:meth:`SystemRegistry.update`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from pygarden.models.system import GardenSystem

_logger = logging.getLogger(__name__)


class SystemRegistry:
    """Identifier-keyed store guarded by a single lock.

    The lock is never held while calling out to anything other than the
    update function passed to :meth:`update`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._systems: dict[str, GardenSystem] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._systems)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._systems

    def load(self, systems: Iterable[GardenSystem]) -> None:
        """Seed the registry, e.g. from the persistence collaborator on startup."""
        with self._lock:
            for system in systems:
                self._systems[system.identifier] = system
            count = len(self._systems)
        _logger.debug("Registry loaded with %d systems", count)

    def upsert(self, system: GardenSystem) -> None:
        """Insert or replace the record for ``system.identifier``."""
        with self._lock:
            created = system.identifier not in self._systems
            self._systems[system.identifier] = system
        if created:
            _logger.debug("Registered system %s", system.identifier)

    def get(self, identifier: str) -> GardenSystem | None:
        with self._lock:
            return self._systems.get(identifier)

    def get_all(self) -> list[GardenSystem]:
        with self._lock:
            return list(self._systems.values())

    def update(
        self,
        identifier: str,
        func: Callable[[GardenSystem], GardenSystem],
    ) -> GardenSystem | None:
        """Atomically replace a record with ``func(record)``.

        Returns the new record, or ``None`` when the identifier is unknown
        (the registry is left untouched).
        """
        with self._lock:
            current = self._systems.get(identifier)
            if current is None:
                return None
            updated = func(current)
            if updated.identifier != identifier:
                raise ValueError("update function must not change the identifier")
            self._systems[identifier] = updated
            return updated

    def upsert_with(
        self,
        identifier: str,
        func: Callable[[GardenSystem | None], GardenSystem],
    ) -> GardenSystem:
        """Atomically store ``func(current)``, where *current* may be ``None``."""
        with self._lock:
            current = self._systems.get(identifier)
            system = func(current)
            if system.identifier != identifier:
                raise ValueError("upsert function must not change the identifier")
            self._systems[identifier] = system
        if current is None:
            _logger.debug("Registered system %s", identifier)
        return system

    def delete(self, identifier: str) -> bool:
        """Remove a record. Returns whether it existed."""
        with self._lock:
            return self._systems.pop(identifier, None) is not None

    def get_coordinator(self) -> GardenSystem | None:
        """Return the single coordinator.

        Mesh routing fails closed: ``None`` is returned when there is no
        coordinator and also when more than one system claims the role.
        """
        with self._lock:
            coordinators = [s for s in self._systems.values() if s.is_coordinator]

        if len(coordinators) == 1:
            return coordinators[0]
        if coordinators:
            _logger.warning(
                "Found %d coordinators (%s), refusing to pick one",
                len(coordinators),
                ", ".join(sorted(c.identifier for c in coordinators)),
            )
        return None
