"""laraguard: static security analysis for Laravel applications."""

__version__ = "1.0.0"
