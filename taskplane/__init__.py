"""
taskplane

Control plane for SQL-defined streaming analytics jobs.
"""

__version__ = "1.0.0"
