"""Polyglot backend package.

Marks `backend` as a proper Python package so imports like
`from backend.web.main import create_app` work reliably in all environments.
"""
