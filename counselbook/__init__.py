"""
counselbook - counselor calendar integration and session booking.
"""

__version__ = "0.1.0"
