#!/usr/bin/env python3
"""
Vesper 身份核心 - FastAPI后端服务
提供注册登录、开发者码绑定、VIP 购买等接口
"""

import secrets
import os
from pathlib import Path
from typing import Optional
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel

from backend.core import admin, audit, credentials, developer_codes, vip
from backend.db import init_db, crud
from backend.exceptions import AppError, AuthorizationError, NotFound
from backend.utils.auth import SessionClaims, get_current_user, issue_token, require_role
from backend.utils.logger import setup_logger

# ==================== 配置 ====================
BASE_DIR = Path(__file__).parent
LOGS_DIR = BASE_DIR / "logs"

# 设置日志
logger = setup_logger("api", LOGS_DIR / "api.log")
setup_logger("backend", LOGS_DIR / "backend.log")

APP_ENV = os.getenv("APP_ENV", "production")
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET", "")


def code_preview(code: str) -> dict:
    """开发环境下回显验证码"""
    return {"codePreview": code} if APP_ENV == "development" else {}


# ==================== 数据模型 ====================

class CamelModel(BaseModel):
    """请求体字段在线上使用驼峰命名"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendCodeRequest(CamelModel):
    email: EmailStr


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str
    nickname: str
    verification_code: str
    developer_code: Optional[str] = None
    device_fingerprint: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class ResetRequest(CamelModel):
    email: EmailStr
    reset_code: str
    password: str


class BindRequest(CamelModel):
    developer_code: str


class GenerateCodesRequest(CamelModel):
    """生成开发者码请求"""
    level: str = "developer"
    quantity: int = 1
    note: Optional[str] = None
    custom_code: Optional[str] = None
    unlimited: bool = False


class RevokeRequest(CamelModel):
    code: str


class CouponRequest(CamelModel):
    """创建优惠券请求"""
    type: str
    value: int = 0
    code: Optional[str] = None
    duration_days: Optional[int] = None
    uses: Optional[int] = None
    unlimited: bool = False


class PurchaseRequest(CamelModel):
    plan: str
    channel: str
    coupon: Optional[str] = None


class ConfirmRequest(CamelModel):
    order_id: str
    success: bool


class StatusRequest(CamelModel):
    user_id: str
    status: str


# ==================== FastAPI 应用 ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("🚀 API服务启动")
    # 初始化数据库（含创世根码）
    init_db()
    logger.info("📦 数据库初始化完成")
    yield
    logger.info("👋 API服务关闭")


app = FastAPI(
    title="Vesper 身份核心",
    description="开发者码权限体系与 VIP 订单 API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.error_code}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"请求参数错误 | {request.url.path} | {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"detail": "Missing fields", "code": "ValidationError"}
    )


# ==================== API 路由 ====================

@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "ok"}


# ==================== 认证路由 ====================

@app.post("/api/auth/send-code")
def send_verification_code(request: SendCodeRequest):
    """发送注册验证码"""
    code = credentials.request_verification(request.email)
    return {"message": "Verification code issued", **code_preview(code)}


@app.post("/api/auth/register")
def register(request: RegisterRequest):
    """完成注册，可附带开发者码"""
    user, role = credentials.complete_registration(
        request.email,
        request.verification_code,
        request.password,
        request.nickname,
        device_fingerprint=request.device_fingerprint,
        developer_code=request.developer_code,
    )
    return {"token": issue_token(user, role), "role": role}


@app.post("/api/auth/login")
def login(request: LoginRequest):
    """登录"""
    user, role = credentials.login(request.email, request.password)
    return {
        "token": issue_token(user, role),
        "role": role,
        "nickname": user.nickname,
        "vipLevel": user.vip_level,
        "vipExpiry": user.vip_expiry,
    }


@app.post("/api/auth/forgot")
def forgot_password(request: SendCodeRequest):
    """发送密码重置码"""
    code = credentials.request_reset(request.email)
    return {"message": "Reset code issued", **code_preview(code)}


@app.post("/api/auth/reset")
def reset_password(request: ResetRequest):
    """使用重置码设置新密码"""
    credentials.complete_reset(request.email, request.reset_code, request.password)
    return {"message": "Password reset"}


@app.get("/api/auth/me")
def get_me(current_user: SessionClaims = Depends(get_current_user)):
    """获取当前用户信息（role 为 token 签发时的角色）"""
    user = crud.get_user_by_id(current_user.id)
    if not user:
        raise NotFound("User not found")
    return {
        "id": user.id,
        "email": user.email,
        "nickname": user.nickname,
        "role": current_user.role,
        "vipLevel": user.vip_level,
        "vipExpiry": user.vip_expiry,
        "status": user.status,
    }


# ==================== 开发者码 API ====================

@app.post("/api/developer/bind")
def bind_developer_code(
    request: BindRequest,
    current_user: SessionClaims = Depends(get_current_user)
):
    """绑定开发者码，返回按新角色签发的 token"""
    user, role = developer_codes.bind(request.developer_code, current_user.id)
    return {"token": issue_token(user, role), "role": role}


@app.post("/api/developer/generate")
def generate_developer_codes(
    request: GenerateCodesRequest,
    current_user: SessionClaims = Depends(require_role("developer"))
):
    """批量生成开发者码"""
    codes = developer_codes.generate(
        current_user.id,
        current_user.role,
        level=request.level,
        quantity=request.quantity,
        custom_code=request.custom_code,
        unlimited=request.unlimited,
        note=request.note,
    )
    return {"codes": [c.code for c in codes]}


@app.get("/api/developer/codes")
def list_developer_codes(current_user: SessionClaims = Depends(require_role("admin"))):
    """开发者码列表"""
    return [c.model_dump() for c in developer_codes.list_codes()]


@app.post("/api/developer/revoke")
def revoke_developer_code(
    request: RevokeRequest,
    current_user: SessionClaims = Depends(require_role("admin"))
):
    """停用开发者码"""
    developer_codes.revoke(request.code, actor_id=current_user.id)
    return {"message": "Revoked"}


# ==================== 优惠券与 VIP API ====================

@app.post("/api/coupons")
def create_coupon(
    request: CouponRequest,
    current_user: SessionClaims = Depends(require_role("admin"))
):
    """创建优惠券"""
    coupon = vip.create_coupon(
        current_user.id,
        request.type,
        request.value,
        code=request.code,
        duration_days=request.duration_days,
        uses=request.uses,
        unlimited=request.unlimited,
    )
    return {"id": coupon.id, "code": coupon.code}


@app.post("/api/vip/purchase")
def purchase_vip(
    request: PurchaseRequest,
    current_user: SessionClaims = Depends(get_current_user)
):
    """创建 VIP 订单"""
    order_id, payable = vip.purchase(current_user.id, request.plan, request.channel, request.coupon)
    return {"orderId": order_id, "payable": payable}


@app.post("/api/vip/confirm")
def confirm_vip_payment(
    request: ConfirmRequest,
    webhook_secret: Optional[str] = Header(None, alias="X-Webhook-Secret")
):
    """
    支付渠道回调
    配置了 PAYMENT_WEBHOOK_SECRET 时需在请求头中提供 X-Webhook-Secret
    """
    if PAYMENT_WEBHOOK_SECRET and not secrets.compare_digest(webhook_secret or "", PAYMENT_WEBHOOK_SECRET):
        logger.warning(f"支付回调密钥错误 | 订单: {request.order_id}")
        raise AuthorizationError()

    status = vip.confirm(request.order_id, request.success)
    return {"status": status}


# ==================== 管理员 API ====================

@app.get("/api/admin/users")
def list_users(current_user: SessionClaims = Depends(require_role("admin"))):
    """用户列表"""
    return admin.list_users()


@app.post("/api/admin/status")
def set_user_status(
    request: StatusRequest,
    current_user: SessionClaims = Depends(require_role("admin"))
):
    """设置账号状态"""
    admin.set_status(current_user.id, request.user_id, request.status)
    return {"message": "Status updated"}


@app.get("/api/audit")
def list_audit_logs(current_user: SessionClaims = Depends(require_role("admin"))):
    """最近 200 条审计日志"""
    return [entry.model_dump() for entry in audit.recent(200)]


# ==================== 启动 ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
