"""HTTP surface for the workflow engine."""

from leadflow.api.routes import register_exception_handlers, router

__all__ = ["register_exception_handlers", "router"]
