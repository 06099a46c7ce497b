"""Top-level package for LastLook, a verified media offload tool."""

from importlib import metadata as _metadata

__all__ = ["__version__", "APP_NAME"]

APP_NAME = "LastLook"


def __getattr__(name: str):
    if name == "__version__":
        try:
            return _metadata.version("lastlook")
        except _metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + ["__version__"])
