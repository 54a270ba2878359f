"""
HTTP API
========

FastAPI application exposing the capture pipeline over HTTP.

Components:
- main: application factory, lifespan and exception handlers
- routes: screenshot and health endpoints
"""
