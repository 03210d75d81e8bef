"""addonkit 配置

缓存位置与有效期、并发度、git/svn 命令与 svn 重试策略都从 Config 读取。
CLI 通过 --config 指定 YAML 文件，未指定时全部取默认值。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

import yaml

from addonkit.core.exceptions import ConfigError
from addonkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

SVN_ACTIONS = ("retry", "reset")

# svn 输出中的错误特征 -> 处理动作
#   retry: 等待后重试（服务端/网络瞬时错误）
#   reset: 删除缓存目录后重新检出（目录非空等残留冲突）
DEFAULT_SVN_RETRY_SIGNATURES: dict[str, str] = {
    "E175002": "retry",   # 服务端返回错误 / 连接中断
    "E170013": "retry",   # 无法连接仓库
    "E175012": "retry",   # 连接超时
    "E000039": "reset",   # Directory not empty
    "Directory not empty": "reset",
}


@dataclass
class Config:
    """全局配置"""

    # 缓存
    tool_namespace: str = ".addonkit"
    cache_dir: str = ""            # 非空时覆盖 home / CI 临时目录推导
    cache_valid_hours: int = 24

    max_workers: int = 8

    # VCS 命令
    git_binary: str = "git"
    svn_binary: str = "svn"
    svn_max_attempts: int = 5
    svn_retry_delay: float = 0.05  # 秒
    svn_retry_signatures: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SVN_RETRY_SIGNATURES),
    )

    # 署名 slug 扫描
    slug_marker: str = "X-Curse-Project-Slug:"
    slug_scan_max_bytes: int = 1024 * 1024

    # 未识别的键原样保留
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """检查数值范围与重试动作

        Raises:
            ConfigError: 任一字段取值无效
        """
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")
        if self.svn_max_attempts < 1:
            raise ConfigError(f"svn_max_attempts 必须 >= 1: {self.svn_max_attempts}")
        if self.cache_valid_hours < 0 or self.svn_retry_delay < 0:
            raise ConfigError("cache_valid_hours / svn_retry_delay 不能为负数")
        bad = {k: v for k, v in self.svn_retry_signatures.items() if v not in SVN_ACTIONS}
        if bad:
            raise ConfigError(f"svn_retry_signatures 中的动作只能是 {SVN_ACTIONS}: {bad}")

    @classmethod
    def from_file(cls, path: str = "addonkit.yml") -> Config:
        """从 YAML 加载；文件不存在时返回默认配置

        Raises:
            ConfigError: 字段类型或取值无效
        """
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"{path}: 无法解析配置文件: {e}") from e
        names = {f.name for f in fields(cls)} - {"extra"}
        known = {k: v for k, v in data.items() if k in names}
        try:
            cfg = cls(**known)
        except TypeError as e:
            raise ConfigError(f"{path}: {e}") from e
        cfg.extra = {k: v for k, v in data.items() if k not in names}
        if cfg.extra:
            logger.debug("%s: 未识别的配置项 %s", path, sorted(cfg.extra))
        try:
            cfg.validate()
        except TypeError as e:
            raise ConfigError(f"{path}: 字段类型错误 ({e})") from e
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# 进程级单例，由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "addonkit.yml") -> Config:
    """加载配置文件并替换全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
