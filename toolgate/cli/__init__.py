"""Toolgate command line interface."""
