"""Bantay-AI — flood threat status propagation service."""

__version__ = "1.0.0"
