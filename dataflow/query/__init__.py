"""
Query Layer

HTTP access to live bars.
"""
