"""共享连接池（shared_pool 形态使用的进程级引擎）。"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from sqlauth.core.config import get_settings


@lru_cache
def get_shared_engine() -> Engine:
    """返回进程级共享引擎，开启连接预检查以减少僵尸连接影响。

    生命周期归宿主进程所有；组件通过构造参数显式接收该引擎。
    """
    settings = get_settings()
    return create_engine(settings.database_url, future=True, pool_pre_ping=True)
