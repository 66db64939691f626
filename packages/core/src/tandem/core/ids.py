"""任务 ID 生成

8 位小写字母数字，使用 CSPRNG + 拒绝采样，保证均匀分布（无取模偏差）。
唯一性由调用方对照 tasks 表检查，冲突时重新生成。
"""

import secrets
import string

from .config import LIMITS

ID_ALPHABET = string.ascii_lowercase + string.digits

# 256 以内 36 的最大整数倍；>= 此值的字节直接丢弃
_REJECTION_BOUND = 256 - (256 % len(ID_ALPHABET))


def generate_task_id(length: int = LIMITS["task_id"]) -> str:
    """生成一个随机任务 ID"""
    chars: list[str] = []
    while len(chars) < length:
        for byte in secrets.token_bytes(length):
            if byte >= _REJECTION_BOUND:
                continue
            chars.append(ID_ALPHABET[byte % len(ID_ALPHABET)])
            if len(chars) == length:
                break
    return "".join(chars)
