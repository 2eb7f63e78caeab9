"""Block-based storage server for crew logs and resource files, with sabotage repair."""

__version__ = "0.1.0"
__all__ = ["__version__"]