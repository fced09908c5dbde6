"""Command-line interface for running and administering check cycles."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses as dc
import typing as typ
from pathlib import Path

from commit_notifier.cycle import CycleBusyError, CycleConfig
from commit_notifier.factory import (
    build_services,
    database_url_from_env,
    open_state_database,
)
from commit_notifier.logging import configure_logging
from commit_notifier.mirror import MirrorError
from commit_notifier.scheduling import CheckScheduler
from commit_notifier.settings import (
    ConfigError,
    Subscriber,
    load_service_document,
)
from commit_notifier.state import StoreError

if typ.TYPE_CHECKING:
    from commit_notifier.cycle import CycleResult
    from commit_notifier.factory import CycleServices

Command: typ.TypeAlias = (
    "typ.Callable[[CycleServices, argparse.Namespace], typ.Awaitable[int]]"
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commit-notifier",
        description="Track git branches and notify subscribers of new commits.",
    )
    parser.add_argument(
        "--working-dir",
        type=Path,
        default=None,
        help="State directory (defaults to COMMIT_NOTIFIER_WORKING_DIR or ./data)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="State database URL (defaults to COMMIT_NOTIFIER_DATABASE_URL)",
    )
    parser.add_argument("--log-level", default="INFO", help="femtologging level")
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="Run one check cycle")
    check.add_argument("--repository", default=None, help="Only check this one")

    watch = commands.add_parser("watch", help="Run check cycles periodically")
    watch.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (defaults to COMMIT_NOTIFIER_CHECK_INTERVAL)",
    )

    validate = commands.add_parser("validate", help="Validate a YAML service file")
    validate.add_argument("file", type=Path)

    importer = commands.add_parser("import", help="Apply a YAML service file")
    importer.add_argument("file", type=Path)

    rebaseline = commands.add_parser(
        "rebaseline", help="Forget a repository's state so it is baselined again"
    )
    rebaseline.add_argument("name")

    remove = commands.add_parser(
        "remove", help="Stop tracking a repository and delete its clone and state"
    )
    remove.add_argument("name")

    branches = commands.add_parser("branches", help="List tracked branch heads")
    branches.add_argument("name")

    watch_pr = commands.add_parser(
        "watch-pr", help="Notify a chat once a pull request merges or closes"
    )
    _add_pull_request_arguments(watch_pr)
    watch_pr.add_argument("--username", default=None)

    unwatch_pr = commands.add_parser("unwatch-pr", help="Drop a pull request watch")
    _add_pull_request_arguments(unwatch_pr)
    return parser


def _add_pull_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("repository")
    parser.add_argument("number", help="Pull request number")
    parser.add_argument("--chat-id", required=True, help="Chat to notify")


def _print_config_error(subject: str, exc: ConfigError) -> None:
    print(f"Configuration rejected for {subject}:")
    for issue in exc.issues:
        print(f"  - [{issue.kind}] {issue.message}")


def _print_cycle(result: CycleResult) -> int:
    if result.skipped:
        print("A check cycle is already running; request dropped.")
        return 1
    print(
        f"checked {len(result.repositories_processed)} repositories, "
        f"{len(result.events)} events, "
        f"{result.notifications_emitted} notifications"
    )
    for failure in result.failures:
        print(f"  ! {failure.repository} [{failure.category}] {failure.message}")
    return 1 if result.failures else 0


async def _check(services: CycleServices, args: argparse.Namespace) -> int:
    coordinator = services.coordinator
    if args.repository is None:
        return _print_cycle(await coordinator.run_check_cycle())
    try:
        result = await coordinator.force_check(args.repository)
    except ConfigError as exc:
        _print_config_error(args.repository, exc)
        return 1
    return _print_cycle(result)


async def _watch(services: CycleServices, args: argparse.Namespace) -> int:
    interval = args.interval or args.config.check_interval_s
    await CheckScheduler(services.coordinator, interval).run()
    return 0


async def _import(services: CycleServices, args: argparse.Namespace) -> int:
    try:
        document = load_service_document(args.file)
        names = await services.settings_store.import_document(document)
    except ConfigError as exc:
        _print_config_error(str(args.file), exc)
        return 1
    print(f"imported {len(names)} repositories: {', '.join(names) or '-'}")
    return 0


async def _rebaseline(services: CycleServices, args: argparse.Namespace) -> int:
    removed = await services.state_store.reset_repository(args.name)
    print(
        f"{args.name}: removed {removed} branch states; "
        "the next cycle records a new baseline"
    )
    return 0


async def _remove(services: CycleServices, args: argparse.Namespace) -> int:
    try:
        await services.coordinator.remove_repository(args.name)
    except ConfigError as exc:
        _print_config_error(args.name, exc)
        return 1
    except CycleBusyError as exc:
        print(exc)
        return 1
    print(f"{args.name}: removed with its clone, state and subscriptions")
    return 0


async def _watch_pr(services: CycleServices, args: argparse.Namespace) -> int:
    subscriber = Subscriber(chat_id=args.chat_id, username=args.username)
    try:
        watch = await services.settings_store.watch_pull_request(
            args.repository, args.number, subscriber
        )
    except ConfigError as exc:
        _print_config_error(f"{args.repository}#{args.number}", exc)
        return 1
    print(
        f"chat {args.chat_id} is told when {watch.repository} "
        f"PR #{watch.identifier} merges or closes"
    )
    return 0


async def _unwatch_pr(services: CycleServices, args: argparse.Namespace) -> int:
    try:
        await services.settings_store.unwatch_pull_request(
            args.repository, args.number, args.chat_id
        )
    except ConfigError as exc:
        _print_config_error(f"{args.repository}#{args.number}", exc)
        return 1
    print(f"chat {args.chat_id} no longer watches {args.repository}#{args.number}")
    return 0


async def _branches(services: CycleServices, args: argparse.Namespace) -> int:
    try:
        heads = await services.coordinator.inspect_repository(args.name)
    except ConfigError as exc:
        _print_config_error(args.name, exc)
        return 1
    except MirrorError as exc:
        print(f"{args.name}: {exc}")
        return 1
    for head in heads:
        print(f"{head.commit_id}  {head.branch}")
    return 0


_COMMANDS: dict[str, Command] = {
    "check": _check,
    "watch": _watch,
    "import": _import,
    "rebaseline": _rebaseline,
    "remove": _remove,
    "branches": _branches,
    "watch-pr": _watch_pr,
    "unwatch-pr": _unwatch_pr,
}


def _validate(path: Path) -> int:
    try:
        document = load_service_document(path)
    except ConfigError as exc:
        _print_config_error(str(path), exc)
        return 1
    print(
        f"service file {path} is valid "
        f"({len(document.repositories)} repositories / "
        f"{len(document.subscriptions)} subscriptions)"
    )
    return 0


async def _run_with_services(args: argparse.Namespace) -> int:
    working_dir: Path = args.config.working_dir
    await asyncio.to_thread(working_dir.mkdir, parents=True, exist_ok=True)
    engine, session_factory = await open_state_database(args.database_url)
    try:
        services = await build_services(session_factory, config=args.config)
        try:
            return await _COMMANDS[args.command](services, args)
        finally:
            await services.aclose()
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Run the ``commit-notifier`` command line.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when validation, lookup or a cycle fails.

    """
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level, force=True)

    if args.command == "validate":
        return _validate(args.file)

    config = CycleConfig.from_env()
    if args.working_dir is not None:
        config = dc.replace(config, working_dir=args.working_dir)
    args.config = config
    if args.database_url is None:
        args.database_url = database_url_from_env(config.working_dir)
    try:
        return asyncio.run(_run_with_services(args))
    except ConfigError as exc:
        _print_config_error(str(config.working_dir), exc)
        return 1
    except StoreError as exc:
        print(f"state store failure: {exc}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
