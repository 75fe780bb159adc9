"""CLI 入口模块 -- python -m parley.core <command>

支持的命令：
  issue-session <username>  为已注册用户签发会话 token（供外部凭据系统调用）
  gen-field-key             生成新的字段加密密钥
"""

import asyncio
import sys

from .config import get_db_path, get_field_key, get_field_key_path, get_session_ttl_s

_USAGE = """用法: python -m parley.core <command>
命令:
  issue-session <username>  为已注册用户签发会话 token
  gen-field-key             生成新的字段加密密钥"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "issue-session":
        if len(sys.argv) < 3:
            print("用法: python -m parley.core issue-session <username>")
            sys.exit(1)
        sys.exit(asyncio.run(issue_session(sys.argv[2])))
    elif command == "gen-field-key":
        from .store.codec import FieldCodec

        print(FieldCodec.generate_key())
    else:
        print(f"未知命令: {command}")
        print("可用命令: issue-session, gen-field-key")
        sys.exit(1)


async def issue_session(username: str) -> int:
    """为指定用户名签发会话，成功返回 0"""
    from .store import create_store_group
    from .store.codec import load_or_create_key

    db_path = get_db_path()
    field_key = load_or_create_key(get_field_key(), get_field_key_path())
    store_group = await create_store_group(db_path, field_key, get_session_ttl_s())

    try:
        user = await store_group.user_store.get_by_username(username)
        if user is None:
            print(f"用户不存在: {username}")
            return 1
        token = await store_group.session_store.issue(user.user_id)
        print(token)
        return 0
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
