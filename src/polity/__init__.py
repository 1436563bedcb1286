"""Polity — weighted proposal governance engine."""

__version__ = "0.1.0"
