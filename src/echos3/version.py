"""Package version, reported by ``echos3 --version``."""

__version__ = "0.3.0"
