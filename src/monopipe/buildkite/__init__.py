from .client import BuildkiteClient

__all__ = ["BuildkiteClient"]
