"""Automation orchestration engine for multi-tenant clinic operations."""

__version__ = "0.4.0"

__all__ = ["AutomationEngine", "create_engine", "__version__"]


def __getattr__(name):  # pragma: no cover - trivial accessor
    if name in ("AutomationEngine", "create_engine"):
        from . import bootstrap

        return getattr(bootstrap, name)
    raise AttributeError(name)
