"""Clinic automation test suite."""
