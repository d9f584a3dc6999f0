"""Core state primitives (token estimation, patch ops, turn events, prompt context).

Kept free of FastAPI concerns so API routes and tests can share them.
"""
