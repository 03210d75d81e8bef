"""CLI: 外部依赖命令"""

from __future__ import annotations

import click

from addonkit.cli import handle_errors


def register(group: click.Group) -> None:
    group.add_command(externals)


@click.group()
def externals() -> None:
    """外部依赖拉取与查看"""


@externals.command()
@click.option("--pkgmeta", "pkgmeta_path", default=".", help="pkgmeta 文件或其所在目录")
@click.option("--package-dir", default="build", help="打包目录")
@click.option(
    "--force", "-E", is_flag=True, envvar="ADDONKIT_FORCE_EXTERNALS",
    help="忽略缓存有效期，强制更新全部依赖",
)
@click.option("--workers", type=int, default=None, help="并发数（默认取配置 max_workers）")
@handle_errors
def fetch(pkgmeta_path: str, package_dir: str, force: bool, workers: int | None) -> None:
    """拉取 pkgmeta 中声明的全部外部依赖并复制到打包目录"""
    from addonkit.core.exceptions import DependencyError
    from addonkit.external.normalizer import parse_declarations
    from addonkit.external.orchestrator import ExternalsFetcher
    from addonkit.external.pkgmeta import load_pkgmeta

    meta = load_pkgmeta(pkgmeta_path)
    if not meta.externals:
        click.echo("没有声明外部依赖。")
        return

    fetcher = ExternalsFetcher(max_workers=workers)
    specs = parse_declarations(meta.externals, fetcher.cache)
    try:
        report = fetcher.fetch_all(
            specs, package_dir, force=force,
            embedded_libraries=meta.embedded_libraries,
        )
    except DependencyError as e:
        for dest, err in e.errors.items():
            click.echo(f"  失败: {dest} - {err}", err=True)
        raise

    for dest, result in report.results.items():
        click.echo(f"  {result.status:8s} {dest}  ({result.selector or 'default'})")
    s = report.summary()
    click.echo(
        f"完成: 共 {s['total']} 个, 更新 {s['updated']}, "
        f"缓存 {s['cached']}, 跳过 {s['skipped']}"
    )
    if report.attribution_slugs:
        click.echo(f"署名: {', '.join(report.attribution_slugs)}")


@externals.command(name="list")
@click.option("--pkgmeta", "pkgmeta_path", default=".", help="pkgmeta 文件或其所在目录")
@handle_errors
def list_externals(pkgmeta_path: str) -> None:
    """列出规范化后的外部依赖声明"""
    from addonkit.core.config import get_config
    from addonkit.external.cache import CacheStore
    from addonkit.external.normalizer import parse_declarations
    from addonkit.external.pkgmeta import load_pkgmeta

    meta = load_pkgmeta(pkgmeta_path)
    if not meta.externals:
        click.echo("没有声明外部依赖。")
        return
    cache = CacheStore.from_config(get_config())
    for spec in parse_declarations(meta.externals, cache):
        info = spec.describe()
        extra = f" path={info['path']}" if "path" in info else ""
        slug = f" slug={info['slug']}" if "slug" in info else ""
        click.echo(
            f"  {info['dest']:30s} [{info['type']:3s}] {info['selector']:20s} "
            f"{info['url']}{extra}{slug}"
        )
