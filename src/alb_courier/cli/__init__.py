"""
Command line interface for ALB Courier.
"""

from .commands import main

__all__ = ["main"]
