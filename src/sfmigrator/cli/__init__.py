"""
Command-line interface for sfmigrator.
"""
