"""
DTW 匹配器

计算两个特征序列之间的动态时间规整 (DTW) 距离
"""

import math
import numpy as np

from .exceptions import EmptySequenceError, DimensionMismatchError
from .models import FeatureSequence, MatchMode

INF = math.inf


class DTWMatcher:
    """
    DTW 匹配器

    累积代价递推（n 为探测序列长度，m 为模板长度）:
        D[0][0] = 0
        D[i][0] = D[0][j] = +inf              (对齐必须从两个序列的首帧开始)
        D[i][j] = cost(i, j) + min(D[i-1][j], D[i][j-1], D[i-1][j-1])
    距离为 D[n][m]，局部代价为两帧之间的欧氏距离。

    完整模式计算整个网格；带约束模式只计算 Sakoe-Chiba 带内的单元，
    带宽为 |n - m| + band_padding，结果不会小于完整模式。
    """

    def __init__(self, band_padding: int = 0):
        """
        初始化匹配器

        Args:
            band_padding: 带约束模式在 |n - m| 之外额外放宽的带宽
        """
        if band_padding < 0:
            raise ValueError(f"band_padding 必须 >= 0，当前值：{band_padding}")
        self.band_padding = band_padding

    def compute(
        self,
        probe: FeatureSequence,
        template: FeatureSequence,
        mode: MatchMode = MatchMode.FULL
    ) -> float:
        """
        计算探测序列与模板之间的 DTW 距离

        Args:
            probe: 探测序列（网格的行）
            template: 模板序列（网格的列）
            mode: 匹配模式

        Returns:
            非负 DTW 距离
        """
        if mode == MatchMode.FULL:
            return self.full_distance(probe, template)
        elif mode == MatchMode.BANDED:
            return self.banded_distance(probe, template)
        raise ValueError(f"不支持的匹配模式: {mode}")

    def full_distance(self, probe: FeatureSequence, template: FeatureSequence) -> float:
        """
        完整 DTW，O(n*m) 时间，只保留一行累积代价

        Args:
            probe: 探测序列
            template: 模板序列

        Returns:
            DTW 距离
        """
        self._check_pair(probe, template)
        n, m = len(probe), len(template)

        # row[j] 在计算第 i 行前保存 D[i-1][j]，计算后保存 D[i][j]
        row = [INF] * (m + 1)
        row[0] = 0.0

        for i in range(1, n + 1):
            costs = self._row_costs(probe.frames[i - 1], template.frames)
            diag = row[0]
            row[0] = INF
            for j in range(1, m + 1):
                # 覆盖 row[j] 之前取出上方邻居，并把它留作下一列的对角邻居
                up = row[j]
                best = min(up, row[j - 1], diag)
                diag = up
                row[j] = costs[j - 1] + best

        return row[m]

    def banded_distance(self, probe: FeatureSequence, template: FeatureSequence) -> float:
        """
        带约束 DTW (Sakoe-Chiba)，O(n*w) 时间

        第 i 行只计算列 [max(1, i-w), min(m, i+w)]，带外单元视为 +inf。
        w >= |n - m| 保证路径能到达 (n, m)，但不保证包含最优路径。

        Args:
            probe: 探测序列
            template: 模板序列

        Returns:
            DTW 距离（>= 完整模式的距离）
        """
        self._check_pair(probe, template)
        n, m = len(probe), len(template)
        w = self.band_width(n, m)

        # 带的左右边界随 i 单调不减，因此右边界以外的单元从未写入过，始终为 +inf；
        # 左边界以左的旧值在进入新行时覆盖为 +inf。
        row = [INF] * (m + 1)
        row[0] = 0.0

        for i in range(1, n + 1):
            lo = max(1, i - w)
            hi = min(m, i + w)
            costs = self._row_costs(probe.frames[i - 1], template.frames[lo - 1:hi])

            diag = row[lo - 1]  # D[i-1][lo-1]
            row[lo - 1] = INF   # D[i][lo-1] 在带外或为第 0 列
            for j in range(lo, hi + 1):
                up = row[j]
                best = min(up, row[j - 1], diag)
                diag = up
                row[j] = costs[j - lo] + best

        return row[m]

    def reference_distance(self, probe: FeatureSequence, template: FeatureSequence) -> float:
        """
        完整二维矩阵的参考实现

        不做任何空间优化，用于校验 full_distance 和 banded_distance。

        Args:
            probe: 探测序列
            template: 模板序列

        Returns:
            DTW 距离
        """
        self._check_pair(probe, template)
        n, m = len(probe), len(template)

        cost = np.full((n + 1, m + 1), np.inf)
        cost[0, 0] = 0.0
        for i in range(1, n + 1):
            for j in range(1, m + 1):
                local = self.local_cost(probe.frames[i - 1], template.frames[j - 1])
                cost[i, j] = local + min(
                    cost[i - 1, j],
                    cost[i, j - 1],
                    cost[i - 1, j - 1],
                )
        return float(cost[n, m])

    def band_width(self, n: int, m: int) -> int:
        """
        带约束模式的带宽

        Args:
            n: 探测序列长度
            m: 模板长度

        Returns:
            带宽 w
        """
        return abs(n - m) + self.band_padding

    @staticmethod
    def local_cost(frame_a: np.ndarray, frame_b: np.ndarray) -> float:
        """两帧之间的欧氏距离"""
        diff = np.asarray(frame_a, dtype=np.float64) - np.asarray(frame_b, dtype=np.float64)
        return math.sqrt(float(np.dot(diff, diff)))

    @staticmethod
    def _row_costs(frame: np.ndarray, frames: np.ndarray) -> list:
        """一帧与一组帧之间的欧氏距离（返回 Python 列表，供内层循环使用）"""
        diff = frames - frame
        return np.sqrt(np.einsum('ij,ij->i', diff, diff)).tolist()

    @staticmethod
    def _check_pair(probe: FeatureSequence, template: FeatureSequence):
        """校验两个序列可以比较"""
        if len(probe) == 0 or len(template) == 0:
            raise EmptySequenceError(
                f"DTW 输入序列不能为空: probe={len(probe)}, template={len(template)}"
            )
        if probe.dimension != template.dimension:
            raise DimensionMismatchError(
                f"特征维度不一致: probe={probe.dimension}, template={template.dimension}"
            )

