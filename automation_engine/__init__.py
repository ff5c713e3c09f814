"""Multi-tenant, event-driven notification automation engine."""


def __getattr__(name):
    """Lazy import so workers and scripts do not pull in FastAPI."""
    if name == "create_app":
        from .main import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
