from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

from vidshelf.engine.base import EngineEntry
from vidshelf.errors import EngineExecError, EngineInitError

logger = logging.getLogger(__name__)

SHARED_LIBRARY_MARKER = "error while loading shared libraries"
STDERR_TAIL_LINES = 15


class FfmpegEngine:
    """MediaEngine backed by the ffmpeg executable and a scratch directory.

    The scratch directory plays the role of the engine's virtual filesystem:
    every name handed to the engine is resolved inside it and ffmpeg runs with
    it as the working directory, so relative names in transform arguments and
    concat manifests refer to sandbox entries.
    """

    def __init__(self, ffmpeg_binary: str = "ffmpeg", workdir: str | Path | None = None) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self._requested_workdir = Path(workdir).expanduser().resolve() if workdir else None
        self._root: Path | None = None
        self._owns_root = False

    @property
    def root(self) -> Path:
        if self._root is None:
            raise EngineInitError("Media engine used before load().")
        return self._root

    async def load(self) -> None:
        stdout, stderr, returncode = await self._spawn([self.ffmpeg_binary, "-version"], error_cls=EngineInitError)
        if returncode != 0:
            if SHARED_LIBRARY_MARKER in stderr:
                raise EngineInitError(
                    "ffmpeg is installed but failed to start because required shared libraries are missing. "
                    f"ffmpeg stderr: {_tail(stderr)}"
                )
            raise EngineInitError(f"ffmpeg failed to start (exit {returncode}): {_tail(stderr) or 'no stderr output'}")

        if self._requested_workdir is not None:
            self._requested_workdir.mkdir(parents=True, exist_ok=True)
            self._root = self._requested_workdir
        else:
            self._root = Path(tempfile.mkdtemp(prefix="vidshelf_engine_"))
            self._owns_root = True

        version_line = stdout.splitlines()[0] if stdout else "ffmpeg"
        logger.info("Media engine ready: %s (sandbox %s)", version_line, self._root)

    async def close(self) -> None:
        if self._root is not None and self._owns_root:
            await asyncio.to_thread(shutil.rmtree, self._root, True)
        self._root = None
        self._owns_root = False

    async def create_dir(self, name: str) -> None:
        await asyncio.to_thread(self._resolve(name).mkdir)

    async def list_dir(self, name: str) -> list[EngineEntry]:
        def _list() -> list[EngineEntry]:
            return [EngineEntry(name=child.name, is_dir=child.is_dir()) for child in sorted(self._resolve(name).iterdir())]

        return await asyncio.to_thread(_list)

    async def delete_dir(self, name: str) -> None:
        await asyncio.to_thread(self._resolve(name).rmdir)

    async def write_file(self, name: str, data: bytes | str) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else data
        await asyncio.to_thread(self._resolve(name).write_bytes, payload)

    async def read_file(self, name: str) -> bytes:
        return await asyncio.to_thread(self._resolve(name).read_bytes)

    async def delete_file(self, name: str) -> None:
        await asyncio.to_thread(self._resolve(name).unlink)

    async def exec(self, args: list[str]) -> None:
        command = [self.ffmpeg_binary, "-hide_banner", "-v", "error", "-y", *args]
        logger.debug("Running ffmpeg: %s", command)
        _, stderr, returncode = await self._spawn(command, error_cls=EngineExecError, cwd=self.root)
        if returncode != 0:
            tail = _tail(stderr) or "No stderr output"
            raise EngineExecError(f"FFmpeg failed (exit {returncode}):\n{tail}", args_list=args, stderr=stderr)

    def _resolve(self, name: str) -> Path:
        root = self.root
        candidate = (root / name.lstrip("/")).resolve()
        if candidate != root and root not in candidate.parents:
            raise ValueError(f"Engine path escapes the sandbox: {name}")
        return candidate

    async def _spawn(
        self,
        command: list[str],
        *,
        error_cls: type[EngineInitError] | type[EngineExecError],
        cwd: Path | None = None,
    ) -> tuple[str, str, int]:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise error_cls(
                f"ffmpeg executable was not found ({self.ffmpeg_binary}). Install FFmpeg so ffmpeg is available on PATH."
            ) from exc

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        assert process.returncode is not None
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode,
        )


def _tail(stderr: str) -> str:
    lines = stderr.strip().splitlines()
    return "\n".join(lines[-STDERR_TAIL_LINES:])
