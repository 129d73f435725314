"""Alphie - control plane for isolated, self-critiquing coding agents."""

__version__ = "0.1.0"
