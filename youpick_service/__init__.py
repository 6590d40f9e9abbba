"""
YouPick Discovery Service - event search, category safety net and community feed
"""
__version__ = "1.0.0"
