"""
API Package
"""
from dynapi.api import endpoints, functions, tables, dynamic

__all__ = ["endpoints", "functions", "tables", "dynamic"]
