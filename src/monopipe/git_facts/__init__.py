from .git import Git

__all__ = ["Git"]
