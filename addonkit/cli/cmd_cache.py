"""CLI: 缓存管理命令"""

from __future__ import annotations

import click

from addonkit.cli import handle_errors
from addonkit.core.config import get_config
from addonkit.external.cache import CacheStore


def register(group: click.Group) -> None:
    group.add_command(cache)


def _store() -> CacheStore:
    return CacheStore.from_config(get_config())


@click.group()
def cache() -> None:
    """外部依赖缓存管理"""


@cache.command(name="path")
@handle_errors
def cache_path() -> None:
    """显示缓存根目录"""
    click.echo(str(_store().root))


@cache.command(name="list")
@handle_errors
def cache_list() -> None:
    """列出缓存槽位"""
    slots = _store().list_slots()
    if not slots:
        click.echo("缓存为空。")
        return
    for s in slots:
        click.echo(f"  [{s['type']:3s}] {s['name']}  {s['markers']}")


@cache.command(name="clear")
@click.option("--yes", "-y", is_flag=True, help="不确认直接删除")
@handle_errors
def cache_clear(yes: bool) -> None:
    """删除整个外部依赖缓存"""
    store = _store()
    if not yes:
        click.confirm(f"确认删除缓存目录 {store.root}?", abort=True)
    if store.clear():
        click.echo(f"已删除: {store.root}")
    else:
        click.echo("缓存目录不存在。")
