"""dbindex: report query columns that have no matching database index."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("db-index-checker")
except PackageNotFoundError:
    __version__ = "dev"
