"""
Toolgate web module.

Web and image search tools backed by external HTTP APIs.
"""

from toolgate.web.search import WebToolset, register_web_tools

__all__ = ["WebToolset", "register_web_tools"]
