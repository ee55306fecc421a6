"""Intervention workflow services."""
