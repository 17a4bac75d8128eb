"""Live, queryable view of the Cfx.re game server directory."""

from .directory import ServerDirectory

__version__ = "0.1.0"

__all__ = ["ServerDirectory", "__version__"]
