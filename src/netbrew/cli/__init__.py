"""
CLI module for netbrew.

Parses the command line, builds the command registry and dispatches
exactly one command per process.
"""
