from __future__ import annotations


class VidshelfError(RuntimeError):
    """Base class for runtime failures surfaced to the CLI."""


class EngineInitError(VidshelfError):
    """The media engine could not be started."""


class EngineExecError(VidshelfError):
    """A transform executed by the media engine failed."""

    def __init__(self, message: str, *, args_list: list[str] | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.args_list = list(args_list or [])
        self.stderr = stderr


class ExportError(VidshelfError):
    """An export run could not produce an output file."""


class ExportCancelled(ExportError):
    """An export run observed a cancellation request between stages."""


class MetadataDraftError(VidshelfError):
    """The generative text API did not return a usable draft."""
