"""
Core application utilities: configuration, logging and token verification.
"""
