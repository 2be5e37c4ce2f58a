from .registry import PolicyRegistry, build_registry

__all__ = ["PolicyRegistry", "build_registry"]
