from abc import ABC, abstractmethod


class Storage(ABC):
    @abstractmethod
    def upload(self, path: str, content: bytes) -> str:
        """Store blob under a relative path; returns its public URL. Never overwrites."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> None:
        raise NotImplementedError
