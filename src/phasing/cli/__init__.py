"""Phasing command-line interface."""
