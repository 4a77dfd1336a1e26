"""Koda: retrieval-augmented documentation assistant backend."""

__version__ = "0.1.0"
