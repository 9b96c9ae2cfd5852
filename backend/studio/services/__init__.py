"""Execution, batch and polling services."""
