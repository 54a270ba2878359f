"""
Core Business Logic
===================

Capture pipeline components.

Modules:
- errors: error taxonomy shared by every pipeline stage
- rendering: session pool, navigation and overlay compositing
- delivery: packaging composed frames for the caller
- pipeline: orchestration with guaranteed session release
"""
