"""
FastAPI应用主入口
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import presence as presence_routes
from api.routes import ws as ws_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from application.services.auth_service import Authenticator
from application.services.broadcast_service import BroadcastService
from application.services.collaboration_service import CollaborationServer
from application.services.plan_notifier import PlanActivityNotifier
from infrastructure.identity import InMemoryIdentityStore
from infrastructure.realtime.connection_manager import ConnectionManager


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    identity_store = InMemoryIdentityStore()
    app.state.identity_store = identity_store
    app.state.authenticator = Authenticator(identity_store)

    # 广播门面先于实时服务创建：实时服务初始化失败时业务广播降级为 no-op
    broadcaster = BroadcastService()
    app.state.broadcaster = broadcaster
    app.state.plan_notifier = PlanActivityNotifier(broadcaster)

    # 初始化实时协作（WebSocket）
    try:
        server = CollaborationServer(
            connections=ConnectionManager(
                queue_max=settings.realtime.send_queue_max,
                overflow_policy=settings.realtime.send_overflow_policy,
            ),
        )
        app.state.collaboration_server = server
        broadcaster.set_server(server)
        logger.info("realtime_initialized", path=settings.realtime.ws_path)
    except Exception as exc:
        logger.error("realtime_init_failed", error=str(exc))

    yield

    # 关闭实时协作
    broadcaster.set_server(None)
    server = getattr(app.state, "collaboration_server", None)
    if server is not None:
        try:
            await server.aclose()
        except Exception as exc:
            logger.warning("realtime_shutdown_failed", error=str(exc))
        app.state.collaboration_server = None
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="计划协作实时服务：WebSocket 在线状态与变更广播",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由（WebSocket 端点不加版本前缀）
app.include_router(ws_routes.router)
app.include_router(presence_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "websocket": settings.realtime.ws_path,
            "docs": "/docs",
        },
        message="Welcome",
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """健康检查端点"""
    server = getattr(request.app.state, "collaboration_server", None)
    return success_response(
        data={
            "status": "healthy",
            "realtime": server is not None,
            "connections": len(server.connections) if server is not None else 0,
        },
        message="OK",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
