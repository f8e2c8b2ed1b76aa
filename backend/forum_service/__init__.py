"""Discussion forum backend service."""
