"""Pydantic models for declared resources, workloads, networks and state."""
