from typing import Optional


class StateStorage:
    """Durable key -> text document storage for the local store."""

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write(self, key: str, content: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStateStorage(StateStorage):
    """Process-local storage, used by tests and throwaway stores."""

    def __init__(self) -> None:
        self._docs: dict = {}

    def read(self, key: str) -> Optional[str]:
        return self._docs.get(key)

    def write(self, key: str, content: str) -> None:
        self._docs[key] = content

    def exists(self, key: str) -> bool:
        return key in self._docs

    def delete(self, key: str) -> None:
        self._docs.pop(key, None)
