"""依赖解析 — 生成构建计划

对目标集合的传递闭包做拓扑排序 (Kahn 算法)：
- 每个单元排在其全部依赖之后
- 无约束的单元之间按注册顺序稳定排列（日志和测试可复现）
- 已构建的单元保留原位置并标记 skip，下游可以确认前置条件存在
- 未注册的依赖边 / 循环依赖在启动任何构建进程之前报错
"""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Sequence

from phmbuild.core.exceptions import CycleDetectedError, MissingDependencyError, UnknownUnitError
from phmbuild.core.models import BuildUnit
from phmbuild.core.registry import UnitRegistry

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass(frozen=True)
class PlanStep:
    """计划中的一步"""

    unit: BuildUnit
    position: int
    skip: bool = False

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def depends(self) -> tuple[str, ...]:
        return self.unit.depends_on


@dataclass
class BuildPlan:
    """有序构建计划"""

    steps: list[PlanStep] = field(default_factory=list)
    targets: tuple[str, ...] = ()

    @property
    def order(self) -> list[str]:
        return [s.name for s in self.steps]

    @property
    def to_execute(self) -> list[str]:
        return [s.name for s in self.steps if not s.skip]

    @property
    def skipped(self) -> list[str]:
        return [s.name for s in self.steps if s.skip]

    def step(self, name: str) -> PlanStep:
        for s in self.steps:
            if s.name == name:
                return s
        raise UnknownUnitError(name)

    def depends_within(self, name: str) -> list[str]:
        """name 在本计划内的直接依赖"""
        members = set(self.order)
        return [d for d in self.step(name).depends if d in members]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def to_dict(self) -> dict:
        return {
            "targets": list(self.targets),
            "steps": [
                {
                    "position": s.position,
                    "unit": s.name,
                    "version": s.unit.version,
                    "kind": s.unit.kind.value,
                    "depends_on": list(s.depends),
                    "skip": s.skip,
                }
                for s in self.steps
            ],
        }


def find_cycle(edges: Mapping[str, Sequence[str]], nodes: Iterable[str]) -> list[str] | None:
    """迭代式三色 DFS，返回第一个环的路径 (首尾相同)，无环返回 None

    edges 中不存在的依赖节点被忽略（缺失依赖由调用方单独报告）。
    """
    color = {n: _WHITE for n in edges}
    for root in nodes:
        if color.get(root, _BLACK) != _WHITE:
            continue
        color[root] = _GREY
        path = [root]
        stack = [iter(edges[root])]
        while stack:
            advanced = False
            for dep in stack[-1]:
                state = color.get(dep)
                if state is None or state == _BLACK:
                    continue
                if state == _GREY:
                    return path[path.index(dep):] + [dep]
                color[dep] = _GREY
                path.append(dep)
                stack.append(iter(edges[dep]))
                advanced = True
                break
            if not advanced:
                color[path.pop()] = _BLACK
                stack.pop()
    return None


def closure(registry: UnitRegistry, targets: Iterable[str]) -> set[str]:
    """目标集合沿 depends_on 的传递闭包

    Raises:
        UnknownUnitError: 目标未注册
        MissingDependencyError: 依赖边指向未注册单元
    """
    seen: set[str] = set()
    stack: list[str] = []
    for t in targets:
        registry.get(t)
        stack.append(t)
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        for dep in registry.get(name).depends_on:
            if dep not in registry:
                raise MissingDependencyError(name, dep)
            if dep not in seen:
                stack.append(dep)
    return seen


def resolve(
    registry: UnitRegistry,
    targets: Iterable[str],
    already_built: Iterable[str] = (),
) -> BuildPlan:
    """计算构建顺序

    Args:
        registry: 构建单元注册表
        targets: 请求构建的单元名
        already_built: 已有构建标记的单元名，计划中标记 skip

    Raises:
        UnknownUnitError / MissingDependencyError / CycleDetectedError
    """
    target_list = list(dict.fromkeys(targets))
    nodes = closure(registry, target_list)
    edges = {n: registry.get(n).depends_on for n in nodes}

    ordered_nodes = sorted(nodes, key=registry.index_of)
    cycle = find_cycle(edges, ordered_nodes)
    if cycle:
        raise CycleDetectedError(cycle)

    indegree = {n: len(edges[n]) for n in nodes}
    dependents: dict[str, list[str]] = {n: [] for n in nodes}
    for n in nodes:
        for dep in edges[n]:
            dependents[dep].append(n)

    heap = [(registry.index_of(n), n) for n in nodes if indegree[n] == 0]
    heapq.heapify(heap)
    built = set(already_built)
    steps: list[PlanStep] = []
    while heap:
        _, name = heapq.heappop(heap)
        steps.append(PlanStep(unit=registry.get(name), position=len(steps), skip=name in built))
        for child in dependents[name]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(heap, (registry.index_of(child), child))

    if len(steps) != len(nodes):
        # find_cycle 已排除环，正常不可达
        remaining = sorted(nodes - {s.name for s in steps}, key=registry.index_of)
        raise CycleDetectedError(remaining)

    plan = BuildPlan(steps=steps, targets=tuple(target_list))
    logger.info(
        "构建计划: %d 个单元 (执行 %d, 跳过 %d)",
        len(plan), len(plan.to_execute), len(plan.skipped),
    )
    return plan
