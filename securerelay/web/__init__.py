"""
Web module - Flask HTTP surface for the relay.
"""

from securerelay.web.app import create_app, main

__all__ = ["create_app", "main"]
