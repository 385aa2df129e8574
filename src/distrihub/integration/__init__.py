"""Integration layer for external service connectivity.

This package provides unified interfaces for external integrations including:
- M-Pesa (Daraja) mobile payments
- Resilience patterns shared by outbound provider calls
"""

from __future__ import annotations

__all__ = ["mpesa", "resilience"]
