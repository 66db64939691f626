"""CLI 入口模块 -- python -m tandem.core <command>

支持的命令：
  inbox       输出 markdown 收件箱
  inbox-json  输出包裹后的 JSON 收件箱（供 agent 读取）
  stats       输出任务统计
"""

import asyncio
import json
import sys

from .config import get_db_path
from .exceptions import TaskQueueError
from .inbox import format_inbox_json, format_inbox_markdown
from .logging_config import setup_logging
from .task_service import TaskService

_COMMANDS = {
    "inbox": "输出 markdown 收件箱",
    "inbox-json": "输出包裹后的 JSON 收件箱",
    "stats": "输出任务统计",
}


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2 or sys.argv[1] not in _COMMANDS:
        if len(sys.argv) >= 2:
            print(f"未知命令: {sys.argv[1]}")
        print("用法: python -m tandem.core <command>")
        print("命令:")
        for name, description in _COMMANDS.items():
            print(f"  {name:<11} {description}")
        sys.exit(1)

    setup_logging()
    try:
        output = asyncio.run(run(sys.argv[1]))
    except TaskQueueError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False), file=sys.stderr)
        sys.exit(1)
    print(output)


async def run(command: str) -> str:
    """执行命令并返回要输出的文本"""
    service = await TaskService.open(get_db_path())
    try:
        if command == "stats":
            return json.dumps(await service.get_stats(), indent=2)
        inbox = await service.generate_inbox()
        if command == "inbox-json":
            return format_inbox_json(inbox)
        return format_inbox_markdown(inbox, service.settings.stale_after_hours)
    finally:
        await service.close()


if __name__ == "__main__":
    main()
