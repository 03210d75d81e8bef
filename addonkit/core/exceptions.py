"""统一异常体系

所有业务异常继承 AddonKitError，按来源分类：
- 声明错误（DeclarationError）：依赖声明缺失 URL 或格式无效
- 环境错误（ToolNotFoundError）：缺少必需的外部命令
- 检出错误（CheckoutError）：VCS 命令失败（含重试耗尽）
- 解析错误（ResolutionError）：分支/tag/commit 无法解析
CLI 层据此输出友好提示。
"""

from __future__ import annotations

from typing import Any


class AddonKitError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(AddonKitError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class DeclarationError(AddonKitError, ValueError):
    """依赖声明格式无效或缺少 URL"""

    code = "DECLARATION_ERROR"


class ToolNotFoundError(AddonKitError):
    """执行路径上缺少必需的外部命令（如 svn）"""

    code = "TOOL_NOT_FOUND"


class UnsupportedBackendError(AddonKitError):
    """已声明但尚未实现的 VCS 类型"""

    code = "UNSUPPORTED_BACKEND"


class CheckoutError(AddonKitError):
    """检出或更新失败"""

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class ResolutionError(CheckoutError):
    """分支/tag/commit 在仓库中不存在或无法唯一确定"""

    code = "RESOLUTION_ERROR"


class CopyError(AddonKitError):
    """从缓存复制到打包目录失败"""

    code = "COPY_ERROR"


class PkgMetaNotFoundError(AddonKitError, FileNotFoundError):
    """目录下没有 pkgmeta.yml 或 .pkgmeta"""

    code = "PKGMETA_NOT_FOUND"


class ExecutionError(AddonKitError):
    """Shell 命令执行失败"""

    code = "EXECUTION_ERROR"


class DependencyError(AddonKitError):
    """外部依赖拉取失败（汇总）

    errors 按声明顺序保存全部失败项，report 为本次拉取的完整报告。
    """

    code = "DEPENDENCY_ERROR"

    def __init__(
        self,
        message: str,
        errors: dict[str, Exception] | None = None,
        report: Any = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or {}
        self.report = report
