"""
sing-box Manager - 命令行入口

编译引擎配置、导入/分享服务器链接、运行 sing-box。
"""
import argparse
import asyncio
import json
import logging
import sys
import threading
from typing import List, Optional

from singbox_gui.core.config_generator import compile_config, dump_config, save_config
from singbox_gui.core.engine import SubprocessLauncher
from singbox_gui.core.events import FatalError, Log, Started, Stopped
from singbox_gui.core.exceptions import CoreError
from singbox_gui.core.parsers import generate_url, parse_links, parse_url
from singbox_gui.core.resources import ResourceManager
from singbox_gui.core.singbox_service import SingBoxService
from singbox_gui.core.user_config import ModeType
from singbox_gui.utils.logging_setup import log_engine_record, setup_logging
from singbox_gui.utils.settings import SettingsManager
from singbox_gui.utils.user_config_store import UserConfigStore

APP_NAME = "sing-box Manager"
APP_VERSION = "1.0.0"

logger = logging.getLogger("singbox_manager")


def _resource_manager(settings: SettingsManager) -> ResourceManager:
    return ResourceManager(settings.resources_dir, settings.rule_set_base_url)


def _compile(settings: SettingsManager, store: UserConfigStore, mode_type: Optional[str]) -> dict:
    config = store.load()
    resources = _resource_manager(settings)
    return compile_config(
        config,
        ModeType.parse(mode_type) if mode_type else None,
        resources.get_rule_set_paths(),
    )


def cmd_compile(args, settings: SettingsManager, store: UserConfigStore) -> int:
    document = _compile(settings, store, args.mode_type)
    if args.output:
        save_config(document, args.output)
        logger.info(f"Config written to {args.output}")
    else:
        print(dump_config(document))
    return 0


def cmd_parse(args, settings: SettingsManager, store: UserConfigStore) -> int:
    if len(args.links) == 1 and not args.add:
        profile = parse_url(args.links[0])
        print(json.dumps(profile.to_dict(), indent=2, ensure_ascii=False))
        return 0

    profiles = parse_links(args.links)
    for profile in profiles:
        print(json.dumps(profile.to_dict(), indent=2, ensure_ascii=False))

    if args.add and profiles:
        config = store.load()
        existing = {s.id for s in config.servers}
        added = [p for p in profiles if p.id not in existing]
        config.servers.extend(added)
        if args.select:
            config.selected_server_id = profiles[0].id
        store.save(config)
        logger.info(f"Added {len(added)} servers")

    return 0 if profiles else 1


def cmd_share(args, settings: SettingsManager, store: UserConfigStore) -> int:
    config = store.load()
    if args.all:
        servers = config.servers
    else:
        server = config.get_selected_server()
        if server is None:
            print("没有选择服务器配置", file=sys.stderr)
            return 1
        servers = [server]

    for server in servers:
        print(generate_url(server))
    return 0


def cmd_update_rules(args, settings: SettingsManager, store: UserConfigStore) -> int:
    status = asyncio.run(_resource_manager(settings).update_rule_sets())
    for tag, ok in status.items():
        print(f"{tag}: {'ok' if ok else 'failed'}")
    return 0 if all(status.values()) else 1


def cmd_run(args, settings: SettingsManager, store: UserConfigStore) -> int:
    resources = _resource_manager(settings)
    engine_path = settings.engine_path or resources.get_engine_path()
    resources.require_resources(engine_path)

    document = _compile(settings, store, args.mode_type)

    launcher = SubprocessLauncher(engine_path)
    if settings.kill_stale_processes:
        launcher.kill_stale_processes()

    service = SingBoxService(
        launcher,
        settings.engine_config_path,
        startup_grace=settings.startup_grace,
        stop_timeout=settings.stop_timeout,
    )

    stopped = threading.Event()

    def on_event(event):
        if isinstance(event, Log):
            log_engine_record(event.record)
        elif isinstance(event, Started):
            logger.info(f"sing-box running (PID: {event.pid})")
        elif isinstance(event, FatalError):
            logger.error(f"Fatal: {event.message}")
        elif isinstance(event, Stopped):
            stopped.set()

    service.event_bus.subscribe(on_event)
    service.start(document)

    try:
        while not stopped.wait(0.5):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping sing-box")
    finally:
        service.stop()
        service.event_bus.flush()
        service.event_bus.close()

    return 1 if service.get_status().last_error else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="singbox-manager", description=APP_NAME)
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("--settings", default="config/settings.json", help="设置文件路径")
    parser.add_argument("--config", help="用户配置文件路径（覆盖设置）")
    parser.add_argument("--log-level", help="日志级别（覆盖设置）")

    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="生成 sing-box 配置")
    compile_parser.add_argument("--mode-type", choices=["local_proxy", "transparent"])
    compile_parser.add_argument("-o", "--output", help="输出文件，默认打印到标准输出")
    compile_parser.set_defaults(func=cmd_compile)

    parse_parser = subparsers.add_parser("parse", help="解析分享链接")
    parse_parser.add_argument("links", nargs="+")
    parse_parser.add_argument("--add", action="store_true", help="添加到服务器列表")
    parse_parser.add_argument("--select", action="store_true", help="选中第一个解析结果")
    parse_parser.set_defaults(func=cmd_parse)

    share_parser = subparsers.add_parser("share", help="生成分享链接")
    share_parser.add_argument("--all", action="store_true", help="输出全部服务器")
    share_parser.set_defaults(func=cmd_share)

    rules_parser = subparsers.add_parser("update-rules", help="下载规则集文件")
    rules_parser.set_defaults(func=cmd_update_rules)

    run_parser = subparsers.add_parser("run", help="运行 sing-box 直到 Ctrl+C")
    run_parser.add_argument("--mode-type", choices=["local_proxy", "transparent"])
    run_parser.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = SettingsManager(args.settings)
    settings.load()
    setup_logging(args.log_level or settings.log_level,
                  settings.log_dir if args.command == "run" else None)

    store = UserConfigStore(args.config or settings.user_config_path)

    try:
        return args.func(args, settings, store)
    except CoreError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        if e.details:
            logger.error(e.details)
        return 1


if __name__ == "__main__":
    sys.exit(main())
