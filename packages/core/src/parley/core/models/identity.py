"""Identity / Session Domain Model

Identity 的在线状态由 PresenceRegistry 维护，这里的 online 字段仅在
目录查询时由调用方填充。email/profession/location 在存储层加密。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Identity(BaseModel):
    """注册用户"""

    user_id: str = Field(description="唯一标识，ULID 格式")
    username: str = Field(description="显示用户名，唯一")
    email: str = Field(default="", description="邮箱（加密存储）")
    profession: str = Field(default="", description="职业（加密存储）")
    location: str = Field(default="", description="所在地（加密存储）")
    avatar: str | None = Field(default=None, description="头像引用")
    online: bool = Field(default=False, description="在线状态")
    created_at: datetime = Field(description="注册时间")


class Session(BaseModel):
    """会话记录，token 仅以摘要形式落库"""

    token_hash: str = Field(description="bearer token 的 SHA-256 摘要")
    user_id: str = Field(description="会话所属用户")
    created_at: datetime = Field(description="创建时间")
    expires_at: datetime = Field(description="过期时间")
