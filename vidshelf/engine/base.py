from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True, frozen=True)
class EngineEntry:
    name: str
    is_dir: bool


class MediaEngine(Protocol):
    """Sandboxed transcoding engine with its own virtual filesystem.

    Names are relative to the sandbox root. `create_dir` raises
    FileExistsError for an existing directory; operations on missing names
    raise FileNotFoundError. `exec` takes ffmpeg-style arguments without the
    program name and raises EngineExecError on failure.
    """

    async def load(self) -> None: ...

    async def create_dir(self, name: str) -> None: ...

    async def list_dir(self, name: str) -> list[EngineEntry]: ...

    async def delete_dir(self, name: str) -> None: ...

    async def write_file(self, name: str, data: bytes | str) -> None: ...

    async def read_file(self, name: str) -> bytes: ...

    async def delete_file(self, name: str) -> None: ...

    async def exec(self, args: list[str]) -> None: ...
