"""
组件容器 - 电台机器人的依赖装配

所有组件都是单例：声明工厂函数和它依赖的组件名，
首次解析时按依赖顺序构造并缓存。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set


@dataclass
class ComponentEntry:
    """组件注册信息"""
    factory: Callable[..., Any]
    requires: List[str] = field(default_factory=list)
    instance: Optional[Any] = None
    built: bool = False


class DependencyContainer:
    """
    单例组件容器

    检测未注册的依赖和循环依赖，保证每个组件只构造一次。
    """

    def __init__(self):
        self.logger = logging.getLogger("radiobot.core.dependency")
        self._entries: Dict[str, ComponentEntry] = {}
        self._resolving: Set[str] = set()

    def register(self, name: str, factory: Callable[..., Any], requires: Optional[List[str]] = None) -> None:
        """
        注册组件

        Args:
            name: 组件名称，同时作为依赖它的工厂函数的关键字参数名
            factory: 构造组件的工厂函数
            requires: 依赖的组件名称列表

        Raises:
            ValueError: 组件已注册
        """
        if name in self._entries:
            raise ValueError(f"组件 '{name}' 已经注册")
        self._entries[name] = ComponentEntry(factory=factory, requires=list(requires or []))
        self.logger.debug(f"📝 注册组件: {name} <- {requires or []}")

    def resolve(self, name: str) -> Any:
        """
        解析组件实例

        Raises:
            ValueError: 组件未注册
            RuntimeError: 循环依赖或构造失败
        """
        entry = self._entries.get(name)
        if entry is None:
            raise ValueError(f"组件 '{name}' 未注册")
        if entry.built:
            return entry.instance
        if name in self._resolving:
            raise RuntimeError(f"检测到循环依赖: {name}")

        self._resolving.add(name)
        try:
            kwargs = {dep: self.resolve(dep) for dep in entry.requires}
            entry.instance = entry.factory(**kwargs)
            entry.built = True
            self.logger.debug(f"✅ 组件构造完成: {name}")
            return entry.instance
        except (ValueError, RuntimeError):
            raise
        except Exception as e:
            self.logger.error(f"❌ 组件构造失败: {name} - {e}", exc_info=True)
            raise RuntimeError(f"组件 '{name}' 构造失败: {e}") from e
        finally:
            self._resolving.discard(name)

    def validate(self) -> None:
        """
        在构造任何组件之前检查依赖图

        Raises:
            RuntimeError: 依赖未注册或存在循环
        """
        done: Set[str] = set()

        def visit(name: str, path: List[str]) -> None:
            if name in done:
                return
            if name in path:
                cycle = " -> ".join(path + [name])
                raise RuntimeError(f"检测到循环依赖: {cycle}")
            for dep in self._entries[name].requires:
                if dep not in self._entries:
                    raise RuntimeError(f"组件 '{dep}' 未注册（被 '{name}' 依赖）")
                visit(dep, path + [name])
            done.add(name)

        for name in self._entries:
            visit(name, [])
        self.logger.debug("✅ 组件依赖关系验证通过")

    def __contains__(self, name: str) -> bool:
        return name in self._entries
