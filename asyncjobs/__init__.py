"""
asyncjobs - durable at-least-once job scheduling.
"""

__version__ = "1.0.0"
