"""Object store layer.

This module manages object contexts over an embedded SQLite store.
It routes work to main or background contexts and coordinates saves.
"""
