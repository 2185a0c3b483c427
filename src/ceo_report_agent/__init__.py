"""CEO daily report automation package."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ceo-report-agent")
except PackageNotFoundError:  # pragma: no cover - fallback during local dev
    __version__ = "0.0.0"

__all__ = ["__version__"]
