"""
FleetSentry 命令行入口模块。

run（前台运行守护进程）、check（验证清单）、collect / backups（执行一轮采集或备份检查）、
auto-restart（设置容器自愈开关）、healing-stats（自愈统计）、latest（各主机最新指标）。
"""
import asyncio
import logging
import signal
import sys
from datetime import timedelta

import click

from fleetsentry import __version__
from fleetsentry.core.config import settings
from fleetsentry.core.database import async_session, engine, init_db
from fleetsentry.core.exceptions import ConfigError, NotFoundError
from fleetsentry.core.fleet_config import FleetConfig, load_fleet_config

logger = logging.getLogger("fleetsentry")


@click.group(invoke_without_command=True)
@click.option("--config", "-c", default=None, help="Fleet inventory YAML (default: $FLEET_CONFIG)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, config, verbose):
    """FleetSentry - 主机群健康监控与容器自愈。"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config or settings.fleet_config

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(f"FleetSentry v{__version__}")
        click.echo(f"Config: {ctx.obj['config_path']}")
        click.echo("Use --help for available commands")


def _load_fleet(ctx) -> FleetConfig:
    config_path = ctx.obj["config_path"]
    try:
        return load_fleet_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _run_once(coro):
    """执行一次性异步命令，结束后释放连接池。"""
    async def _wrapper():
        try:
            return await coro
        finally:
            await engine.dispose()
    return asyncio.run(_wrapper())


async def _prepare(fleet: FleetConfig) -> None:
    from fleetsentry.services.seed import seed_from_config

    await init_db()
    async with async_session() as db:
        await seed_from_config(db, fleet)


@cli.command()
@click.pass_context
def run(ctx):
    """以前台模式运行守护进程。"""
    from fleetsentry.tasks.scheduler import backup_loop, build_monitor, collection_loop

    fleet = _load_fleet(ctx)
    logger.info(f"Starting FleetSentry v{__version__}")
    logger.info(f"Hosts: {len(fleet.hosts)}, backups: {len(fleet.backups)}")
    logger.info(f"Collect interval: {settings.collect_interval_seconds}s")
    logger.info(f"Healing: {'enabled' if settings.healing_enabled else 'disabled'}")

    async def _main():
        await _prepare(fleet)
        monitor = build_monitor()
        try:
            await asyncio.gather(collection_loop(monitor), backup_loop(monitor, fleet))
        finally:
            await engine.dispose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    main_task = loop.create_task(_main())

    # 注册信号处理，优雅关闭
    def _shutdown(sig):
        logger.info(f"Received {sig.name}, shutting down...")
        main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        logger.info("FleetSentry stopped")
    except Exception:
        logger.exception("FleetSentry crashed")
        sys.exit(1)
    finally:
        loop.close()


@cli.command()
@click.pass_context
def check(ctx):
    """验证清单文件是否正确。"""
    config_path = ctx.obj["config_path"]
    try:
        fleet = load_fleet_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        click.echo(f"❌ Config error: {e}", err=True)
        sys.exit(1)
    click.echo(f"✅ Config OK: {config_path}")
    click.echo(f"   Hosts: {len(fleet.hosts)} ({', '.join(h.name for h in fleet.hosts) or '-'})")
    click.echo(f"   Backups: {len(fleet.backups)}")
    click.echo(f"   Alert rules: {len(fleet.alert_rules) or 'defaults'}")


@cli.command()
@click.pass_context
def collect(ctx):
    """执行一轮指标 + 容器采集并输出结果。"""
    from fleetsentry.tasks.scheduler import build_monitor, run_collection_cycle

    fleet = _load_fleet(ctx)

    async def _collect():
        await _prepare(fleet)
        return await run_collection_cycle(build_monitor())

    results = _run_once(_collect())
    for outcome in results["metrics"]:
        if not outcome.ok:
            state = f"error: {outcome.error}"
        elif outcome.value is None:
            state = "unreachable"
        else:
            r = outcome.value
            state = f"cpu={r.cpu_percent}% mem={r.memory_percent}% disk={r.disk_percent}% load={r.load_1m}"
        click.echo(f"metrics    {outcome.key}: {state}")
    for outcome in results["containers"]:
        if not outcome.ok:
            state = f"error: {outcome.error}"
        elif outcome.value is None:
            state = "inventory failed"
        else:
            running = sum(1 for c in outcome.value if c.is_running)
            state = f"{len(outcome.value)} containers ({running} running)"
        click.echo(f"containers {outcome.key}: {state}")


@cli.command()
@click.pass_context
def backups(ctx):
    """执行一轮备份检查并输出结果。"""
    from fleetsentry.tasks.scheduler import build_monitor, run_backup_cycle

    fleet = _load_fleet(ctx)

    async def _check():
        await _prepare(fleet)
        return await run_backup_cycle(build_monitor(), fleet)

    for result in _run_once(_check()):
        click.echo(f"{result.name}: {result.status} ({result.details})")


@cli.command("auto-restart")
@click.argument("host")
@click.argument("container")
@click.option("--on/--off", "enabled", default=True, help="Enable or disable automatic restart")
def auto_restart(host, container, enabled):
    """设置容器的 auto_restart 开关。"""
    from fleetsentry.collectors.containers import set_auto_restart

    async def _set():
        await init_db()
        async with async_session() as db:
            await set_auto_restart(db, host, container, enabled)

    try:
        _run_once(_set())
    except NotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"auto_restart {'on' if enabled else 'off'}: {container} @ {host}")


@cli.command("healing-stats")
def healing_stats():
    """输出自愈动作统计。"""
    from fleetsentry.services.healing import healing_summary

    async def _stats():
        await init_db()
        async with async_session() as db:
            return await healing_summary(db)

    stats = _run_once(_stats())
    click.echo(f"Total: {stats['total']}")
    click.echo(f"Last 24h: {stats['last_24h']}")
    for result, count in stats["by_result"].items():
        click.echo(f"  {result}: {count}")


@cli.command()
def latest():
    """输出每台主机的最新指标（长时间未更新的主机不显示）。"""
    from fleetsentry.services.latest_state import latest_metrics

    async def _latest():
        await init_db()
        async with async_session() as db:
            return await latest_metrics(db, max_age=timedelta(seconds=settings.latest_metrics_max_age_seconds))

    rows = _run_once(_latest())
    if not rows:
        click.echo("No recent metrics")
        return
    for host, m in rows:
        click.echo(
            f"{host.name:<20} cpu={m.cpu_percent}% mem={m.memory_percent}% "
            f"disk={m.disk_percent}% load={m.load_1m}/{m.load_5m}/{m.load_15m} "
            f"at {m.collected_at.isoformat()}"
        )


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
