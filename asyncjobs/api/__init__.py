"""
Admin API for the asyncjobs scheduler.

FastAPI application exposing job management and scheduler status.
"""
