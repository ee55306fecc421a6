"""Intervention workflow engine for vehicle-wrap service jobs."""
