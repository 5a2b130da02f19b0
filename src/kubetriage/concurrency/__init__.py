"""
Bounding of concurrently processed alerts
"""

from .semaphore import AsyncSemaphore, SemaphoreStats

__all__ = ["AsyncSemaphore", "SemaphoreStats"]
