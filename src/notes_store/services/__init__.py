"""Service layer: tag extraction, rendering, and note orchestration."""
