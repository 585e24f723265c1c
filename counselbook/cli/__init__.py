"""
Command line interface for counselbook.
"""
