"""
Engine

Configuration and runtime for the bar service.
"""
