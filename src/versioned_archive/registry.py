"""Registry of declared containers, keyed by module-qualified name."""

from typing import Iterator


class RegistryError(LookupError):
    """Raised when a container name is unknown or ambiguous."""


class ContainerRegistry:
    """In-process registry: qualified name -> container class.

    Type id collisions between differently named containers are not
    detected; find() simply lists every container carrying the id.
    """

    def __init__(self) -> None:
        self._containers: dict[str, type] = {}

    @staticmethod
    def key(container: type) -> str:
        return f"{container.__module__}.{container.__qualname__}"

    def register(self, container: type, *, override: bool = False) -> None:
        """Register a container. Raises if registered unless override=True.

        Raises:
            ValueError: If the qualified name is already registered and
                override is False.
        """
        key = self.key(container)
        if key in self._containers and not override:
            raise ValueError(f"Container already registered: {key!r}")
        self._containers[key] = container

    def unregister(self, container: type) -> None:
        self._containers.pop(self.key(container), None)

    def get(self, name: str) -> type:
        """Return the container registered under a qualified or bare name.

        Raises:
            RegistryError: If no container, or more than one, matches
        """
        if name in self._containers:
            return self._containers[name]
        matches = [c for c in self._containers.values() if c.__qualname__ == name]
        if not matches:
            raise RegistryError(f"Unknown container: {name!r}")
        if len(matches) > 1:
            candidates = ", ".join(self.key(c) for c in matches)
            raise RegistryError(f"Ambiguous container name {name!r}: {candidates}")
        return matches[0]

    def find(self, type_id: int) -> list[type]:
        """Containers whose ARCHIVE_TYPE_ID equals ``type_id``, in registration order."""
        return [c for c in self._containers.values() if c.ARCHIVE_TYPE_ID == type_id]

    def __contains__(self, container: object) -> bool:
        return isinstance(container, type) and self._containers.get(self.key(container)) is container

    def __iter__(self) -> Iterator[type]:
        return iter(list(self._containers.values()))

    def __len__(self) -> int:
        return len(self._containers)


default_registry = ContainerRegistry()
