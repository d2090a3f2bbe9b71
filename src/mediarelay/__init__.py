"""Mediarelay - HTTP relay for remote video and image generation services."""

__version__ = "0.3.0"

from mediarelay.core.config import RelayConfig, config

__all__ = [
    "RelayConfig",
    "config",
]
