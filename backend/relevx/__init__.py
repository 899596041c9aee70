"""Relevx — scheduled web research engine."""
