"""Shared type and exception definitions for the exporter."""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

# Counter name -> unsigned 64-bit value, as reported by `eadm stat`.
CounterSnapshot = Dict[str, int]


class CollectorError(Exception):
    """Base exception for collector errors."""
    pass


class CommandError(CollectorError):
    """Raised when an external command cannot be run or exits non-zero."""
    def __init__(
        self,
        command: Sequence[str],
        reason: str,
        returncode: Optional[int] = None,
        stderr: str = ""
    ):
        self.command: List[str] = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"failed to execute {' '.join(self.command)}: {reason}"
        if stderr:
            message += f", stderr: {stderr.strip()}"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """Raised when an external command exceeds its deadline."""
    pass


class VersionNotFoundError(CollectorError):
    """Raised when the driver version cannot be found in `eadm ver` output."""
    pass


@dataclass(frozen=True)
class Device:
    """An ERDMA device as listed by `ibv_devices`."""
    name: str
    guid: str

    def to_dict(self) -> Dict[str, str]:
        """Convert the device to a dictionary."""
        return {"name": self.name, "guid": self.guid}
