"""任务 ID 生成测试 -- 格式、唯一性、字符分布"""

from collections import Counter

from tandem.core.ids import _REJECTION_BOUND, ID_ALPHABET, generate_task_id
from tandem.core.sanitize import validate_task_id


class TestGenerateTaskId:
    """generate_task_id"""

    def test_format(self):
        """8 位小写字母数字"""
        for _ in range(100):
            assert validate_task_id(generate_task_id())

    def test_custom_length(self):
        assert len(generate_task_id(12)) == 12

    def test_rejection_bound_is_multiple_of_alphabet(self):
        """拒绝采样上界是字母表长度的整数倍"""
        assert _REJECTION_BOUND % len(ID_ALPHABET) == 0
        assert _REJECTION_BOUND == 252

    def test_no_collisions_in_10k_draws(self):
        """10,000 次生成无重复"""
        ids = {generate_task_id() for _ in range(10_000)}
        assert len(ids) == 10_000

    def test_distribution_is_uniform_looking(self):
        """每个字符出现频率接近均值（80,000 个字符，期望约 2222 次）"""
        counts = Counter("".join(generate_task_id() for _ in range(10_000)))
        expected = 80_000 / len(ID_ALPHABET)
        assert set(counts) == set(ID_ALPHABET)
        for char, count in counts.items():
            assert abs(count - expected) < expected * 0.15, char
