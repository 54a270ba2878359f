"""
Brandshot
=========

Capture a remote web page in a headless browser, brand it with an overlay band
naming the site, and hand the composed PNG back to the caller.

This package provides:
- A bounded pool of ephemeral Playwright browser sessions
- Navigation with network-idle completion and hard timeouts
- Two overlay compositing strategies (DOM injection, raster composition)
- Three delivery formats (raw PNG, base64 data URI, stored file reference)
- A FastAPI front end for HTTP access
"""

__version__ = "1.0.0"
__author__ = "Brandshot Team"
