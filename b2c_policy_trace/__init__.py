"""Azure AD B2C policy consolidation and journey trace reconstruction."""

from __future__ import annotations

__version__ = "0.3.0"
