"""Test suite for phi-guard."""
