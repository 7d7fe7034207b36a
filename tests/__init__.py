"""Backrun Bundle Executor test suite."""
