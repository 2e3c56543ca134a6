"""QueryGate: a gateway between dashboards and user-owned databases."""

__version__ = "0.1.0"
