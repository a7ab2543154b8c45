"""
Command-line interface (console script ``publisher``).
"""
