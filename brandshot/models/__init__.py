"""
Data Models
===========

Pydantic data models for request/response validation and internal data structures.

Models:
- schemas: capture requests, overlay specs, frames, delivery artifacts and API responses
"""
