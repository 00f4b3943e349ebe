"""
Job runners for the swap proposal engine.
"""

from .expiration_job import ExpirationSweeper, ExpirationSweepMetrics

__all__ = ["ExpirationSweeper", "ExpirationSweepMetrics"]
