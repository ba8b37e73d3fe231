"""package-assistant - normalized package management across Linux distributions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("package-assistant")
except PackageNotFoundError:
    __version__ = "0.0.0"
