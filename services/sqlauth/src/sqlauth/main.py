"""FastAPI 应用入口点。"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from sqlauth.api.router import api_router
from sqlauth.core.config import get_settings
from sqlauth.dependencies import get_verifier_registry
from sqlauth.exceptions import register_exception_handlers
from sqlauth.middlewares import register_middlewares

logger = logging.getLogger("sqlauth")


def _setup_logging() -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 启动期构建全部认证源，配置错误直接中止启动。
    registry = app.dependency_overrides.get(get_verifier_registry, get_verifier_registry)()
    logger.info("sqlauth started authsource=%s", get_settings().authsource)
    app.state.verifier_registry = registry
    yield


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    settings = get_settings()
    _setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        description=(
            "账号表口令认证与一次性口令重置接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "账号表登录与登出。"},
            {"name": "passcode", "description": "账号概览与一次性口令重置。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
