"""
Toolgate core module.

Builds the tool registry, execution gate and relay from configuration.
"""

from toolgate.core.toolbox import Toolbox

__all__ = ["Toolbox"]
