"""会话消息路由

GET /api/chat/{peer_id}: 当前用户与 peer 的历史消息（按时间升序）。
POST /api/chat/{peer_id}: HTTP 方式发送消息，与 WebSocket chat message 同一流程，
                          落库后同样推送到房间。
"""

from fastapi import APIRouter, Depends
from parley.core.models import Identity, Message, room_key
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_current_identity, get_synchronizer

router = APIRouter()


class MessageRequest(BaseModel):
    """发送消息请求体，body 与 media 至少提供一个"""

    body: str | None = Field(default=None, description="文本内容")
    media: str | None = Field(default=None, description="媒体引用（相对路径或 URL）")


class HistoryResponse(BaseModel):
    """会话历史响应"""

    room_key: str
    messages: list[Message]


@router.get("/api/chat/{peer_id}", response_model=HistoryResponse)
async def get_history(
    peer_id: str,
    identity: Identity = Depends(get_current_identity),
    synchronizer=Depends(get_synchronizer),
):
    """查询会话历史，peer 不存在返回 404 USER_NOT_FOUND"""
    messages = await synchronizer.history(identity.user_id, peer_id)
    return HistoryResponse(
        room_key=room_key(identity.user_id, peer_id),
        messages=messages,
    )


@router.post("/api/chat/{peer_id}", response_model=Message, status_code=201)
async def send_message(
    peer_id: str,
    body: MessageRequest,
    identity: Identity = Depends(get_current_identity),
    synchronizer=Depends(get_synchronizer),
):
    """发送消息，返回 201 和服务端确认后的消息"""
    message = await synchronizer.send(
        identity.user_id, peer_id, body=body.body, media=body.media
    )
    return JSONResponse(status_code=201, content=message.model_dump(mode="json"))
