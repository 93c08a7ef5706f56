"""plinv - publish and mutate plugin inventory images."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("plinv")
except PackageNotFoundError:
    __version__ = "0.0.0"
