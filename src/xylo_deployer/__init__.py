"""XYLO-MD deployer.

Signs a user in with GitHub, forks the bot repository, writes their session id onto a
fresh branch and runs the bot through a GitHub Actions workflow.
"""

__version__ = "0.1.0"

from xylo_deployer.server.config import ServerSettings

__all__ = ["__version__", "ServerSettings"]
