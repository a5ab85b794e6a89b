"""Exceptions raised by the VirtualBox debug source layer."""


class VBoxTopError(Exception):
    """Base class for vboxtop errors."""


class VBoxManageError(VBoxTopError):
    """A VBoxManage invocation failed, timed out, or the tool is missing."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CoreDumpError(VBoxTopError):
    """A core image is malformed or uses an unsupported layout."""
