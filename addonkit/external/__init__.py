"""外部依赖拉取与同步

拆分说明:
- cache.py: 缓存根目录、槽位与新鲜度标记
- normalizer.py: 依赖声明规范化
- vcs.py: 驱动基类与按后端分派
- git_driver.py / svn_driver.py: 检出驱动
- orchestrator.py: 并发拉取编排
- copier.py: 缓存到打包目录的复制
- pkgmeta.py: pkgmeta 文件加载
"""

from addonkit.external.cache import CacheStore, StalenessMarker, resolve_cache_root
from addonkit.external.copier import copy_to_package
from addonkit.external.normalizer import parse_declaration, parse_declarations
from addonkit.external.orchestrator import ExternalsFetcher, fetch_externals
from addonkit.external.pkgmeta import PkgMeta, load_pkgmeta
from addonkit.external.vcs import VcsDriver, create_driver

__all__ = [
    "CacheStore",
    "StalenessMarker",
    "resolve_cache_root",
    "parse_declaration",
    "parse_declarations",
    "VcsDriver",
    "create_driver",
    "ExternalsFetcher",
    "fetch_externals",
    "copy_to_package",
    "PkgMeta",
    "load_pkgmeta",
]
