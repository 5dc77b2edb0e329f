"""Standalone maintenance helpers."""
