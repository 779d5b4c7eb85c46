"""
@description FastAPI 应用入口
@responsibility 初始化应用、集成路由、创建共享限流器和后台任务管理器
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import auth, config, jobs, replication, sync, system
from app.api.auth import init_auth_router
from app.api.config import init_config_router
from app.api.jobs import init_jobs_router
from app.api.replication import init_replication_router
from app.api.sync import init_sync_router
from app.api.system import init_system_router
from app.core.config import load_config
from app.core.database import init_db
from app.schemas.api import error_response, success_response
from app.services.credentials import CredentialVault, generate_key
from app.services.job_store import JobStore
from app.tasks.job_runner import JobManager, RateGovernors


config_obj = None
job_manager: Optional[JobManager] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global config_obj, job_manager

    logger.info("应用启动中...")

    config_obj = load_config()
    logger.info("配置加载完成")

    await init_db()
    logger.info("数据库初始化完成")

    encryption_key = config_obj.security.encryption_key
    if not encryption_key:
        encryption_key = generate_key()
        logger.warning("未配置 encryption_key，已生成临时密钥，重启后已保存的凭证将无法解密")

    store = JobStore()
    vault = CredentialVault(encryption_key)
    governors = RateGovernors(config_obj)
    job_manager = JobManager(config_obj, store, vault, governors)

    init_sync_router(job_manager)
    init_replication_router(job_manager)
    init_jobs_router(job_manager, store)
    init_auth_router(vault, job_manager)
    init_config_router(config_obj)
    init_system_router(job_manager)
    logger.info("后台任务管理器已就绪")

    yield

    if job_manager:
        await job_manager.shutdown()

    logger.info("应用已关闭")


app = FastAPI(
    title="ClickUp → monday 任务桥接",
    description="把 ClickUp 附件同步到 monday item，或把 ClickUp 列表复制为 monday 看板",
    version="1.0.0",
    lifespan=lifespan,
)


# 全局异常处理器
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理 HTTP 异常"""
    logger.info(f"HTTP 异常处理器被调用: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.status_code, exc.detail).model_dump(),
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
        content=error_response(
            422, "请求参数验证失败", {"errors": errors}
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """处理通用异常"""
    logger.exception(f"服务器内部错误: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content=error_response(500, "服务器内部错误").model_dump(),
    )


app.include_router(sync.router, prefix="/api", tags=["sync"])
app.include_router(replication.router, prefix="/api", tags=["replication"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(config.router, prefix="/api", tags=["config"])
app.include_router(system.router, prefix="/api", tags=["system"])


@app.get("/")
async def root():
    return success_response(
        data={"message": "ClickUp → monday 任务桥接 API", "version": "1.0.0"},
        message="服务运行中",
    )


@app.get("/health")
async def health_check():
    return success_response(data={"status": "healthy"}, message="健康检查通过")
