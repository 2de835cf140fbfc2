"""路由模块导出集合。"""

from . import auth, health, passcode

__all__ = ["auth", "health", "passcode"]
