"""
@description FastAPI 应用入口
@responsibility 初始化应用、装配服务、集成路由、启动后台回收任务
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from winkr.api import photos, system, ws
from winkr.api.photos import init_photos_router
from winkr.api.system import init_system_router
from winkr.api.ws import init_ws_router
from winkr.cache.kv_cache import RedisCache
from winkr.core.config import load_config
from winkr.core.database import configure_database, dispose_db, init_db
from winkr.core.errors import WinkrError
from winkr.repositories.ephemeral_photo_store import EphemeralPhotoStore
from winkr.repositories.photo_view_log import PhotoViewLog
from winkr.repositories.user_repository import UserRepository
from winkr.schemas.api import ApiResponse, success_response
from winkr.services.chat_cache import ChatCache
from winkr.services.ephemeral_photo import EphemeralPhotoService
from winkr.services.message_service import MessageService
from winkr.services.notifier import ConnectionManager, PhotoEventNotifier
from winkr.services.photo_chat import PhotoChatService
from winkr.tasks.reclaimer import PhotoReclaimer

config_obj = None
redis_cache: Optional[RedisCache] = None
reclaimer: Optional[PhotoReclaimer] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global config_obj, redis_cache, reclaimer

    logger.info("应用启动中...")

    config_obj = load_config()
    logger.info("配置加载完成")

    configure_database(config_obj.database.url, echo=config_obj.database.echo)
    await init_db()
    logger.info("数据库初始化完成")

    redis_cache = RedisCache.from_url(config_obj.redis.url, prefix=config_obj.redis.prefix)
    if not await redis_cache.ping():
        logger.warning("Redis 不可用，聊天缓存将按未命中处理")

    chat_cache = ChatCache(
        redis_cache,
        ttl=config_obj.cache_ttl,
        photo_ttl_seconds=config_obj.ephemeral_photo.photo_cache_ttl_seconds,
    )
    connections = ConnectionManager()
    notifier = PhotoEventNotifier(connections)

    photo_service = EphemeralPhotoService(
        EphemeralPhotoStore(),
        PhotoViewLog(),
        UserRepository(),
        cache=chat_cache,
        notifier=notifier,
        config=config_obj.ephemeral_photo,
    )
    photo_chat = PhotoChatService(
        photo_service,
        MessageService(cache=chat_cache),
        chat_cache,
        notifier,
        view_duration_seconds=config_obj.ephemeral_photo.chat_view_duration_seconds,
    )

    reclaimer = PhotoReclaimer(photo_service, config_obj.reclamation)

    init_photos_router(photo_service, photo_chat)
    init_system_router(reclaimer, connections)
    init_ws_router(connections, chat_cache)

    if config_obj.reclamation.enabled:
        await reclaimer.start()
    else:
        logger.info("后台回收任务已禁用")

    yield

    if reclaimer:
        await reclaimer.stop()
    if redis_cache:
        await redis_cache.close()
    await dispose_db()

    logger.info("应用已关闭")


app = FastAPI(
    title="Winkr 阅后即焚照片服务",
    description="阅后即焚照片生命周期、聊天缓存与实时推送",
    version="1.0.0",
    lifespan=lifespan,
)


# 全局异常处理器
@app.exception_handler(WinkrError)
async def winkr_error_handler(request: Request, exc: WinkrError):
    """处理业务错误"""
    logger.info(f"业务错误: {exc.kind.value} - {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(
            code=exc.status_code, message=exc.message, data={"kind": exc.kind.value}
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理 HTTP 异常"""
    logger.info(f"HTTP 异常处理器被调用: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(code=exc.status_code, message=exc.detail, data=None).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求参数验证错误"""
    logger.info(f"验证错误处理器被调用: {len(exc.errors())} 个错误")
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ApiResponse(
            code=422, message="请求参数验证失败", data={"errors": errors}
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """处理通用异常"""
    logger.exception(f"服务器内部错误: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content=ApiResponse(code=500, message="服务器内部错误", data=None).model_dump(),
    )


app.include_router(photos.router, prefix="/api", tags=["ephemeral-photos"])
app.include_router(system.router, prefix="/api", tags=["system"])
app.include_router(ws.router)


@app.get("/")
async def root():
    return success_response(
        data={"message": "Winkr 阅后即焚照片服务 API", "version": "1.0.0"},
        message="服务运行中",
    )


@app.get("/health")
async def health_check():
    return success_response(data={"status": "healthy"}, message="健康检查通过")
