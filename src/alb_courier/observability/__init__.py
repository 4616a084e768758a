"""Observability helpers for ALB Courier."""

from .metrics import ShiftMetrics

__all__ = ["ShiftMetrics"]
