"""Exception taxonomy shared by the engines and the pipeline."""

from __future__ import annotations


class WeldPathError(Exception):
    """Base class for all weldpath failures."""


class InvalidInput(WeldPathError, ValueError):
    """Empty or malformed input, or mismatched array lengths."""


class UnsupportedFormat(WeldPathError, ValueError):
    """File extension that no loader or writer recognises."""


class EngineFailure(WeldPathError):
    """A geometry engine operation failed; the message is the engine's last error."""


class NoSolution(WeldPathError):
    """Inverse kinematics found no valid configuration for one target pose."""


class ResourceExhausted(WeldPathError):
    """The engine could not allocate what an operation needed."""


class AlreadyRunning(WeldPathError):
    """A pipeline run was requested while another one is still in flight."""


class Disposed(WeldPathError, RuntimeError):
    """An operation touched a handle or orchestrator that was already released."""


__all__ = [
    "WeldPathError",
    "InvalidInput",
    "UnsupportedFormat",
    "EngineFailure",
    "NoSolution",
    "ResourceExhausted",
    "AlreadyRunning",
    "Disposed",
]
