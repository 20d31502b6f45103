"""
Locally offered files and the registry the serving loop answers from.

A file is identified by its base name.  New files are inactive: nothing is
served or advertised until the user activates it.
"""

import asyncio
import logging
import os
from pathlib import Path

logger = logging.getLogger("mixshare.shareable")


class InvalidShareableFile(ValueError):
    """Raised when a path cannot be offered for sharing."""


class ShareableFile:
    """A file on disk that may be served to peers."""

    def __init__(self, path: str | os.PathLike):
        path = Path(path)
        if not path.name:
            raise InvalidShareableFile("Path must contain a valid file name")
        if not path.exists():
            raise InvalidShareableFile(f"File does not exist: {path}")
        if not path.is_file():
            raise InvalidShareableFile(f"Path is not a file: {path}")

        self.path = path
        self.active = False
        # Number of times this file was listed in an advertise reply.
        self.advertise = 0
        # Number of times this file was sent to a peer.
        self.downloads = 0

    def __repr__(self) -> str:
        state = "active" if self.active else "inactive"
        return f"ShareableFile({self.name!r}, {state})"

    @property
    def name(self) -> str:
        return self.path.name

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False

    def size(self) -> int | None:
        try:
            return self.path.stat().st_size
        except OSError:
            return None

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class ShareRegistry:
    """Every file offered by this peer.  ``lock`` guards the list."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.files: list[ShareableFile] = []

    async def add(self, path: str | os.PathLike, active: bool = False) -> ShareableFile:
        """Offer *path*.  Raises InvalidShareableFile.

        Adding a path that is already offered returns the existing entry;
        a different file with the same base name is rejected.
        """
        shareable = ShareableFile(path)
        async with self.lock:
            existing = self.find(shareable.name, active_only=False)
            if existing is not None:
                if existing.path.resolve() != shareable.path.resolve():
                    raise InvalidShareableFile(
                        f"A file named {shareable.name} is already shared"
                    )
                if active:
                    existing.activate()
                return existing
            if active:
                shareable.activate()
            self.files.append(shareable)
        logger.info("Added shareable file %s", shareable.name)
        return shareable

    async def remove(self, name: str) -> bool:
        async with self.lock:
            for i, shareable in enumerate(self.files):
                if shareable.name == name:
                    del self.files[i]
                    logger.info("Removed shareable file %s", name)
                    return True
        return False

    async def set_active(self, name: str, active: bool) -> bool:
        async with self.lock:
            shareable = self.find(name, active_only=False)
            if shareable is None:
                return False
            shareable.active = active
        return True

    # The helpers below do not take the lock; callers already hold it.

    def find(self, name: str, active_only: bool = True) -> ShareableFile | None:
        for shareable in self.files:
            if shareable.name == name and (shareable.active or not active_only):
                return shareable
        return None

    def active_names(self) -> list[str]:
        return [f.name for f in self.files if f.active]
