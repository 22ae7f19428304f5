"""Ambient concerns: settings, logging, errors, wiring and health."""
