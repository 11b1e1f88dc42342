"""medbot — Chat channel bot with points and experience economy."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("medbot")
except PackageNotFoundError:
    __version__ = "0.0.0"
