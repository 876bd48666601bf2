"""Load engines and their plugin registry."""
