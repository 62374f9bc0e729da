"""Jarvis command-line interface."""
