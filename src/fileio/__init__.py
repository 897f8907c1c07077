"""File codec layer.

This module saves and loads serializable values as named JSON or text
files in one writable directory and reads packaged bundle resources.
"""
