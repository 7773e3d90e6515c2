"""Hindley-Milner type and effect inference with traits."""

__version__ = "0.1.0"
