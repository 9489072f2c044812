"""Structural, semantic and style checks for device trees held in memory."""

__version__ = "0.1.0"
__all__ = ["data", "tree", "checkbase", "structure", "buses", "references", "checks"]