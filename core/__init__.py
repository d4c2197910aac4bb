"""MyClaw core — agent loop, tool dispatch and background work."""

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

try:
    __version__: str = _pkg_version("myclaw")
except PackageNotFoundError:
    __version__ = "dev"
