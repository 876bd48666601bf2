"""Lightweight load-test orchestrator."""
