"""Core functionality for the relay.

This package holds everything below the HTTP layer:

- **config.py**: Configuration management using Pydantic Settings
  (``MEDIARELAY_`` environment variables and ``.env``)
- **errors.py**: Error taxonomy rendered as ``{"error", "suggestion"}`` bodies
- **prompts.py**: Prompt enhancement, moderation sanitising, display metadata
- **image_store.py**: Data-URI decoding, disk image storage, Pillow optimisation
- **record_store.py**: In-memory generation records mirrored to a JSON file
- **clients.py**: httpx adapters for the generation, vision and image host APIs
- **orchestrator.py**: Submission, polling reconciliation and retry logic
- **ports.py**: Ordered port selection for the server process
"""

from mediarelay.core.config import RelayConfig, config
from mediarelay.core.record_store import GenerationRecord, RecordStore

__all__ = [
    "GenerationRecord",
    "RecordStore",
    "RelayConfig",
    "config",
]
