"""用户路由

POST /api/users: 注册新用户并签发会话。
GET /api/users: 用户目录（排除自己），附带在线状态与未读数。
GET /api/users/me: 当前身份。
GET /api/users/{user_id}: 查询单个用户（发起会话前的存在性检查）。
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends
from parley.core.config import SESSION_COOKIE_NAME, get_session_ttl_s
from parley.core.exceptions import NotFoundError
from parley.core.models import Identity
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_current_identity, get_presence, get_store_group

log = structlog.get_logger()

router = APIRouter()


class RegisterRequest(BaseModel):
    """注册请求体"""

    username: str = Field(description="用户名，至少 3 个字符")
    email: str = Field(description="邮箱")
    profession: str = Field(default="", description="职业")
    location: str = Field(default="", description="所在地")
    avatar: str | None = Field(default=None, description="头像引用")


class UserView(BaseModel):
    """用户视图（资料字段为解密后的明文）"""

    user_id: str
    username: str
    email: str
    profession: str
    location: str
    avatar: str | None
    online: bool = False
    unseen: int = 0
    created_at: datetime

    @classmethod
    def from_identity(cls, identity: Identity, online: bool, unseen: int = 0) -> "UserView":
        return cls(
            **identity.model_dump(exclude={"online"}),
            online=online,
            unseen=unseen,
        )


class RegisterResponse(BaseModel):
    """注册响应"""

    user: UserView
    session_token: str


@router.post("/api/users", response_model=RegisterResponse, status_code=201)
async def register_user(
    body: RegisterRequest,
    store_group=Depends(get_store_group),
):
    """注册用户，返回 201 和会话 token（同时写入会话 Cookie）"""
    identity = await store_group.user_store.create_user(
        username=body.username,
        email=body.email,
        profession=body.profession,
        location=body.location,
        avatar=body.avatar,
    )
    token = await store_group.session_store.issue(identity.user_id)
    log.info("user_registered", user_id=identity.user_id)

    response = JSONResponse(
        status_code=201,
        content=RegisterResponse(
            user=UserView.from_identity(identity, online=False),
            session_token=token,
        ).model_dump(mode="json"),
    )
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=get_session_ttl_s(),
        httponly=True,
        samesite="lax",
    )
    return response


@router.get("/api/users", response_model=list[UserView])
async def list_users(
    identity: Identity = Depends(get_current_identity),
    store_group=Depends(get_store_group),
    presence=Depends(get_presence),
):
    """用户目录：除当前用户外的所有用户，unseen 为对方发给我且未读的消息数"""
    others = await store_group.user_store.list_users(exclude_user_id=identity.user_id)
    return [
        UserView.from_identity(
            other,
            online=presence.is_online(other.user_id),
            unseen=await store_group.message_store.count_unseen(
                other.user_id, identity.user_id
            ),
        )
        for other in others
    ]


@router.get("/api/users/me", response_model=UserView)
async def get_me(
    identity: Identity = Depends(get_current_identity),
    presence=Depends(get_presence),
):
    """当前登录用户"""
    return UserView.from_identity(
        identity, online=presence.is_online(identity.user_id)
    )


@router.get("/api/users/{user_id}", response_model=UserView)
async def get_user(
    user_id: str,
    identity: Identity = Depends(get_current_identity),
    store_group=Depends(get_store_group),
    presence=Depends(get_presence),
):
    """查询单个用户，不存在返回 404 USER_NOT_FOUND"""
    other = await store_group.user_store.get_user(user_id)
    if other is None:
        raise NotFoundError(
            f"User with id {user_id} does not exist", code="USER_NOT_FOUND"
        )
    return UserView.from_identity(
        other,
        online=presence.is_online(other.user_id),
        unseen=await store_group.message_store.count_unseen(
            other.user_id, identity.user_id
        ),
    )
