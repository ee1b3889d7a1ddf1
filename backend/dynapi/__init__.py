"""
Dynamic API Runtime - serves user-authored SQL endpoints and database functions
"""
__version__ = "1.0.0"
