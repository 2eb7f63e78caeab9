"""Plain ``KEY=VALUE`` metadata files used for resource files and crew logs."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from typing import Union

PathLike = Union[str, "os.PathLike[str]"]


def format_block_list(blocks: Iterable[int]) -> str:
    """Render block numbers the way the BLOCKS key stores them: ``[1,2,3]``."""
    return "[" + ",".join(str(int(block)) for block in blocks) + "]"


class MetadataFile:
    """A ``KEY=VALUE`` file kept in memory until :meth:`save` is called."""

    def __init__(self, path: PathLike, values: Mapping[str, object]) -> None:
        self.path = os.fspath(path)
        self._values: dict[str, str] = {str(k): str(v) for k, v in values.items()}

    @classmethod
    def load(cls, path: PathLike) -> "MetadataFile":
        """Parse the file at ``path``; raises FileNotFoundError if it is missing."""
        values: dict[str, str] = {}
        with open(path, encoding="utf-8", errors="replace") as handle:
            for line in handle:
                line = line.rstrip("\r\n")
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                values[key] = value
        return cls(path, values)

    def save(self) -> None:
        """Write every key back to the file, one ``KEY=VALUE`` line each."""
        with open(self.path, "w", encoding="utf-8") as handle:
            for key, value in self._values.items():
                handle.write(f"{key}={value}\n")

    def get_int(self, key: str) -> int:
        return int(self[key].strip())

    def get_list(self, key: str) -> list[str]:
        """Return the elements of a ``[a,b,c]`` value as stripped strings."""
        raw = self[key].strip()
        if raw.startswith("["):
            raw = raw[1:]
        if raw.endswith("]"):
            raw = raw[:-1]
        if not raw.strip():
            return []
        return [item.strip() for item in raw.split(",")]

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value: object) -> None:
        self._values[key] = str(value)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"MetadataFile({self.path!r}, {self._values!r})"