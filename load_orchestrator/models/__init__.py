"""Run request, record and result models."""
