"""外部依赖拉取编排

每个依赖一个任务，在有界线程池中并发执行:
  构造驱动 -> checkout() -> 复制到打包目录

多个声明可能落到同一个缓存槽位（同一仓库的不同子路径），
同一槽位上的检出与复制按槽位加锁串行执行。

失败策略:
  - 所有依赖都会被尝试，互不影响
  - 全部完成后若有失败，以声明顺序中的第一个错误抛出 DependencyError，
    其余错误写入日志并随异常一并返回
  - HG / 未知后端只警告并跳过
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

if TYPE_CHECKING:
    from addonkit.core.config import Config
    from addonkit.utils.shell import CommandExecutor

from addonkit.core.exceptions import AddonKitError, DependencyError, UnsupportedBackendError
from addonkit.core.models import CheckoutResult, ExternalDependencySpec, FetchReport
from addonkit.external.cache import CacheStore
from addonkit.external.copier import copy_to_package
from addonkit.external.normalizer import parse_declarations
from addonkit.external.vcs import create_driver
from addonkit.utils.logger import bind_logger

logger = logging.getLogger(__name__)


class ExternalsFetcher:
    """外部依赖拉取器"""

    def __init__(
        self,
        cache: CacheStore | None = None,
        *,
        config: Config | None = None,
        executor: CommandExecutor | None = None,
        max_workers: int | None = None,
    ) -> None:
        if config is None:
            from addonkit.core.config import get_config
            config = get_config()
        self.config = config
        self.cache = cache or CacheStore.from_config(config)
        self.executor = executor
        self.max_workers = max(1, max_workers or config.max_workers)

    def fetch_all(
        self,
        specs: Iterable[ExternalDependencySpec],
        package_dir: str | Path,
        *,
        force: bool = False,
        embedded_libraries: Iterable[str] = (),
    ) -> FetchReport:
        """拉取全部依赖并复制到打包目录

        Raises:
            DependencyError: 任一依赖失败（在全部依赖处理完之后抛出）
        """
        spec_list = list(specs)
        manual = [s for s in embedded_libraries if s]
        report = FetchReport()
        start = time.monotonic()

        if spec_list:
            self.cache.ensure()
            logger.info("开始拉取 %d 个外部依赖 (并发=%d)", len(spec_list), self.max_workers)

        locks = {spec.cache_slot: threading.Lock() for spec in spec_list}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                pool.submit(
                    self._fetch_one, spec, Path(package_dir), force, locks[spec.cache_slot],
                )
                for spec in spec_list
            ]
            # 按声明顺序收集，保证"第一个错误"可复现
            for spec, future in zip(spec_list, futures):
                try:
                    result = future.result()
                except AddonKitError as e:
                    result = CheckoutResult(dest_path=spec.dest_path, status="error", message=str(e))
                    report.errors[spec.dest_path] = e
                except OSError as e:
                    logger.exception("拉取外部依赖时出错: %s", spec.dest_path)
                    result = CheckoutResult(dest_path=spec.dest_path, status="error", message=str(e))
                    report.errors[spec.dest_path] = e
                report.results[spec.dest_path] = result
                if result.status == "skipped":
                    report.skipped.append(spec.dest_path)

        report.duration = time.monotonic() - start
        report.attribution_slugs = self._collect_slugs(spec_list, report, manual)

        if report.errors:
            for dest, err in report.errors.items():
                logger.error("外部依赖失败: %s - %s", dest, err)
            first = report.first_error
            raise DependencyError(
                f"拉取外部依赖失败: {first}", errors=dict(report.errors), report=report,
            ) from first

        logger.info("全部外部依赖已就绪，耗时 %.1f 秒 (%s)", report.duration, report.summary())
        return report

    def _fetch_one(
        self,
        spec: ExternalDependencySpec,
        package_dir: Path,
        force: bool,
        slot_lock: threading.Lock,
    ) -> CheckoutResult:
        log = bind_logger(logger, spec.dest_path)
        try:
            driver = create_driver(
                spec, self.cache, force=force, executor=self.executor, config=self.config,
            )
        except UnsupportedBackendError as e:
            log.warning("%s，已跳过", e)
            return CheckoutResult(dest_path=spec.dest_path, status="skipped", message=str(e))

        log.info("处理外部依赖: %s (%s)", spec.url, spec.vcs.value)
        with slot_lock:
            result = driver.checkout()
            copy_to_package(result, package_dir)
        log.info("已复制到打包目录 (%s)", result.selector or "default")
        return result

    @staticmethod
    def _collect_slugs(
        specs: list[ExternalDependencySpec], report: FetchReport, manual: list[str],
    ) -> list[str]:
        """汇总署名 slug（去重排序），缺失时给出警告"""
        slugs = set(manual)
        missing = False
        for spec in specs:
            result = report.results.get(spec.dest_path)
            if result is None or not result.success:
                continue
            if result.attribution_slug:
                slugs.add(result.attribution_slug)
                continue
            log = bind_logger(logger, spec.dest_path)
            if not manual:
                log.warning("未找到署名 slug，且 pkgmeta 中没有 embedded-libraries")
                log.warning("请在依赖声明中添加 curse-slug，或在 embedded-libraries 中列出，以支持原作者")
            else:
                log.warning("未找到署名 slug")
                missing = True

        if missing and len(slugs) < len(specs):
            logger.warning("部分外部依赖无法确定署名 slug，且可能不在 embedded-libraries 中")
            logger.warning("请确认所有外部库都有 slug，或将其加入 embedded-libraries")
        return sorted(slugs)


def fetch_externals(
    declarations: Mapping[str, Any],
    package_dir: str | Path,
    *,
    force: bool = False,
    embedded_libraries: Iterable[str] = (),
    cache: CacheStore | None = None,
    config: Config | None = None,
    executor: CommandExecutor | None = None,
) -> FetchReport:
    """规范化声明并拉取全部外部依赖"""
    fetcher = ExternalsFetcher(cache, config=config, executor=executor)
    specs = parse_declarations(declarations, fetcher.cache)
    return fetcher.fetch_all(
        specs, package_dir, force=force, embedded_libraries=embedded_libraries,
    )
