"""Utility modules for phi-guard."""
