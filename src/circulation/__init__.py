"""Item lending and fine engine for library copies."""

__version__ = "0.1.0"
