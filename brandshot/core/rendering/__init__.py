"""
Rendering
=========

Browser-side part of the capture pipeline.

Modules:
- session_pool: bounded pool of ephemeral Playwright sessions
- navigation: page loading with timeout classification
- overlay: branding band compositing strategies
"""
