"""
API package - FastAPI routes and schemas.
"""

from nodeflow.api.routes import websocket, workflow, workflows

__all__ = ["websocket", "workflow", "workflows"]
