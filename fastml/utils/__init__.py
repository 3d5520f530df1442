"""
Shared helpers: constants, exceptions, error handling and file I/O.
"""
