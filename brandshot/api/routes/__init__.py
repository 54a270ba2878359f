"""
API Routes
==========

FastAPI routers for the screenshot and health endpoints.
"""
