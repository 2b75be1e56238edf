"""Command-line interface for scriptdeck."""

import argparse
import json
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from scriptdeck import __version__
from scriptdeck.core import (
    CallbackObserver,
    CatalogStore,
    ConsolePrompt,
    Context,
    CredentialBroker,
    ExecutionResult,
    GroupOrchestrator,
    InvalidInputError,
    PrivilegeClassifier,
    ScriptEntry,
    ScriptRunner,
    StorageError,
    discover_scripts,
    filter_scripts,
    find_script,
)
from scriptdeck.core.config import ConfigError, Settings, load_settings
from scriptdeck.core.logging import LOG_COMPONENTS, LOG_LEVELS, EventLogger, get_log_path, query_logs
from scriptdeck.core.store import resolve_members

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NOT_FOUND = 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="scriptdeck",
        description="Discover, classify and run shell scripts",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"scriptdeck {__version__}",
    )
    parser.add_argument(
        "--scripts-dir",
        type=Path,
        default=None,
        help="Directory containing scripts (default: from config, else current directory)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Catalog file holding groups (default: ~/.config/scriptdeck/catalog.yaml)",
    )
    parser.add_argument(
        "--format",
        choices=["plain", "json"],
        default="plain",
        help="Output format (default: plain)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list command
    list_parser = subparsers.add_parser("list", help="List discovered scripts")
    list_parser.add_argument(
        "--tag",
        "-t",
        action="append",
        dest="tags",
        help="Filter by tag (can be specified multiple times)",
    )
    list_parser.add_argument("--search", "-s", dest="query", help="Search names, descriptions and tags")

    # show command
    show_parser = subparsers.add_parser("show", help="Show script details")
    show_parser.add_argument("script", help="Script name to show")

    # scan command
    subparsers.add_parser("scan", help="Report which scripts need sudo")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a script")
    run_parser.add_argument("script", help="Script name to run")
    run_parser.add_argument(
        "--sudo",
        action="store_true",
        help="Run with sudo when the script looks like it needs root",
    )
    run_parser.add_argument(
        "--terminal",
        action="store_true",
        help="Open the script in a terminal window instead",
    )
    run_parser.add_argument("--timeout", type=float, help="Timeout in seconds (default: 30)")

    # chmod command
    chmod_parser = subparsers.add_parser("chmod", help="Make a script executable")
    chmod_parser.add_argument("script", help="Script name")

    # group command
    group_parser = subparsers.add_parser("group", help="Manage and run script groups")
    group_sub = group_parser.add_subparsers(dest="group_command")
    group_sub.add_parser("list", help="List groups")
    create_group_parser = group_sub.add_parser("create", help="Create a group")
    create_group_parser.add_argument("name")
    create_group_parser.add_argument("--description", "-d", default="")
    add_parser = group_sub.add_parser("add", help="Append scripts to a group")
    add_parser.add_argument("group")
    add_parser.add_argument("scripts", nargs="+")
    remove_parser = group_sub.add_parser("remove", help="Remove a script from a group")
    remove_parser.add_argument("group")
    remove_parser.add_argument("script")
    delete_parser = group_sub.add_parser("delete", help="Delete a group")
    delete_parser.add_argument("group")
    group_run_parser = group_sub.add_parser("run", help="Run a group sequentially")
    group_run_parser.add_argument("group")
    group_run_parser.add_argument("--sudo", action="store_true", help="Allow sudo for members that need it")
    group_run_parser.add_argument(
        "--terminal",
        action="store_true",
        help="Open each member in its own terminal",
    )

    # doctor command
    subparsers.add_parser("doctor", help="Check tools and summarize the catalog")

    # logs command
    logs_parser = subparsers.add_parser("logs", help="Show event log entries")
    logs_parser.add_argument(
        "component",
        nargs="?",
        choices=LOG_COMPONENTS,
        help="Component to show (default: all, merged by time)",
    )
    logs_parser.add_argument("--level", choices=list(LOG_LEVELS), default="debug")
    logs_parser.add_argument("--limit", type=int)
    logs_parser.add_argument("--date", type=date.fromisoformat, dest="log_date")

    return parser


@dataclass
class Services:
    """Objects shared by the commands of one invocation."""

    settings: Settings
    context: Context
    classifier: PrivilegeClassifier
    broker: CredentialBroker
    runner: ScriptRunner
    orchestrator: GroupOrchestrator
    store: CatalogStore
    loggers: dict[str, EventLogger]

    def discover(self) -> list[ScriptEntry]:
        return discover_scripts(
            self.settings.scripts_dir,
            extension=self.settings.extension,
            context=self.context,
            logger=self.loggers["discovery"],
        )

    def close(self) -> None:
        """Stop background workers and close log files."""
        self.runner.shutdown()
        self.orchestrator.shutdown()
        for logger in self.loggers.values():
            logger.close()


def build_services(args: argparse.Namespace, settings: Settings | None = None) -> Services:
    """Wire the core objects from settings and command-line overrides."""
    if settings is None:
        settings = load_settings(
            overrides={
                "scripts_dir": args.scripts_dir,
                "store_path": args.store,
                "timeout": getattr(args, "timeout", None),
            }
        )

    context = Context()
    loggers = {
        component: EventLogger(component, get_log_path(component, settings.log_dir))
        for component in LOG_COMPONENTS
    }
    classifier = PrivilegeClassifier(context=context, logger=loggers["runner"])
    broker = CredentialBroker(
        ConsolePrompt(),
        context=context,
        logger=loggers["credentials"],
        validation_timeout=settings.prompt_timeout,
    )
    runner = ScriptRunner(
        classifier=classifier,
        broker=broker,
        context=context,
        logger=loggers["runner"],
        timeout=settings.timeout,
        elevated_timeout=settings.effective_elevated_timeout,
        terminals=settings.terminals,
    )
    orchestrator = GroupOrchestrator(
        runner,
        context=context,
        logger=loggers["groups"],
        terminal_delay=settings.terminal_delay,
    )
    return Services(
        settings=settings,
        context=context,
        classifier=classifier,
        broker=broker,
        runner=runner,
        orchestrator=orchestrator,
        store=CatalogStore(settings.store_path),
        loggers=loggers,
    )


def _entry_json(entry: ScriptEntry, services: Services | None = None) -> dict:
    data = {
        "name": entry.name,
        "path": str(entry.path),
        "description": entry.description,
        "tags": entry.tags,
        "executable": entry.executable,
        "last_modified": entry.last_modified.isoformat() if entry.last_modified else None,
    }
    if services is not None:
        classification = services.classifier.classify(entry)
        data["requires_sudo"] = classification.requires_elevation
        data["sudo_reasons"] = list(classification.categories)
    return data


def _result_json(result: ExecutionResult) -> dict:
    return {
        "script": result.script_name,
        "success": result.success,
        "exit_code": result.exit_code,
        "elapsed": round(result.elapsed, 3),
        "error_kind": result.error_kind.value if result.error_kind else None,
        "stdout": result.stdout,
        "stderr": result.stderr,
    }


def _print_result(args: argparse.Namespace, result: ExecutionResult) -> None:
    if args.format == "json":
        print(json.dumps(_result_json(result), indent=2))
        return
    print(result.stdout, end="")
    if result.stderr:
        print(result.stderr, file=sys.stderr, end="" if result.stderr.endswith("\n") else "\n")
    status = "OK" if result.success else "FAILED"
    print(f"[{status}] {result.script_name} (exit {result.exit_code}, {result.elapsed:.2f}s)", file=sys.stderr)


def _lookup(services: Services, name: str) -> ScriptEntry | None:
    script = find_script(services.discover(), name)
    if script is None:
        print(f"Script not found: {name}", file=sys.stderr)
    return script


def cmd_list(args: argparse.Namespace, services: Services) -> int:
    """List discovered scripts."""
    scripts = filter_scripts(services.discover(), tags=args.tags, query=args.query)

    if not scripts:
        print("No scripts found.")
        return EXIT_OK

    for script in sorted(scripts, key=lambda s: s.name):
        if args.format == "json":
            print(json.dumps(_entry_json(script)))
        else:
            flag = " " if script.executable else "!"
            print(f"{flag} {script.name:30} {script.description}")

    return EXIT_OK


def cmd_show(args: argparse.Namespace, services: Services) -> int:
    """Show script details."""
    script = _lookup(services, args.script)
    if script is None:
        return EXIT_NOT_FOUND

    data = _entry_json(script, services)
    if args.format == "json":
        print(json.dumps(data, indent=2))
    else:
        print(f"Name:        {script.name}")
        print(f"Path:        {script.path}")
        print(f"Description: {script.description}")
        if script.tags:
            print(f"Tags:        {', '.join(script.tags)}")
        print(f"Executable:  {'yes' if script.executable else 'no'}")
        if script.last_modified:
            print(f"Modified:    {script.last_modified:%Y-%m-%d %H:%M:%S}")
        if data["requires_sudo"]:
            print(f"Needs sudo:  yes ({', '.join(data['sudo_reasons'])})")
        else:
            print("Needs sudo:  no")

    return EXIT_OK


def cmd_scan(args: argparse.Namespace, services: Services) -> int:
    """Report which scripts need sudo."""
    scripts = sorted(services.discover(), key=lambda s: s.name)
    summary = services.classifier.classify_all(scripts)

    if args.format == "json":
        print(json.dumps({
            "total": summary.total,
            "elevated": summary.elevated_count,
            "plain": summary.plain_count,
            "scripts": [_entry_json(s, services) for s in scripts],
        }, indent=2))
        return EXIT_OK

    for script in scripts:
        classification = services.classifier.classify(script)
        if classification.requires_elevation:
            print(f"sudo  {script.name:30} {', '.join(classification.categories)}")
        else:
            print(f"user  {script.name}")
    print(f"\n{summary}")
    return EXIT_OK


def cmd_run(args: argparse.Namespace, services: Services) -> int:
    """Run a script."""
    script = _lookup(services, args.script)
    if script is None:
        return EXIT_NOT_FOUND

    if args.terminal:
        result = services.runner.run_in_terminal(script, elevate=True if args.sudo else None)
    elif args.sudo:
        result = services.runner.run_elevated(script)
    else:
        if services.classifier.requires_elevation(script):
            print(f"Note: {script.name} looks like it needs root; use --sudo", file=sys.stderr)
        result = services.runner.run(script)

    _print_result(args, result)
    return EXIT_OK if result.success else EXIT_FAILURE


def cmd_chmod(args: argparse.Namespace, services: Services) -> int:
    """Make a script executable."""
    script = _lookup(services, args.script)
    if script is None:
        return EXIT_NOT_FOUND

    if services.runner.make_executable(script):
        print(f"Made executable: {script.path}")
        return EXIT_OK
    print(f"Failed to make executable: {script.path}", file=sys.stderr)
    return EXIT_FAILURE


def _find_group(services: Services, name: str):
    group = services.store.find_group(name)
    if group is None:
        print(f"Group not found: {name}", file=sys.stderr)
    return group


def cmd_group(args: argparse.Namespace, services: Services) -> int:
    """Manage and run script groups."""
    store = services.store
    sub = args.group_command

    if sub is None or sub == "list":
        groups = store.load_groups()
        if args.format == "json":
            print(json.dumps([
                {
                    "id": g.id,
                    "name": g.name,
                    "description": g.description,
                    "scripts": [str(p) for p in g.scripts],
                }
                for g in groups
            ], indent=2))
        elif not groups:
            print("No groups.")
        else:
            for g in groups:
                print(f"{g.id:>3}  {g.name:20} {len(g.scripts)} script(s)  {g.description}")
        return EXIT_OK

    if sub == "create":
        group = store.create_group(args.name, args.description)
        print(f"Created group {group.id}: {group.name}")
        return EXIT_OK

    group = _find_group(services, args.group)
    if group is None:
        return EXIT_NOT_FOUND

    if sub == "delete":
        store.remove_group_and_memberships(group.id)
        print(f"Group removed: {group.name}")
        return EXIT_OK

    if sub == "add":
        catalog = services.discover()
        for name in args.scripts:
            script = find_script(catalog, name)
            if script is None:
                print(f"Script not found: {name}", file=sys.stderr)
                return EXIT_NOT_FOUND
            if store.add_script_to_group(group.id, script.path):
                print(f"Script added to group {group.name}: {script.name}")
            else:
                print(f"Already in group {group.name}: {script.name}")
        return EXIT_OK

    if sub == "remove":
        path = Path(args.script)
        member = next((p for p in group.scripts if p.name == args.script or p.stem == args.script), path)
        if not store.remove_script_from_group(group.id, member):
            print(f"Not in group {group.name}: {args.script}", file=sys.stderr)
            return EXIT_NOT_FOUND
        print(f"Script removed from group {group.name}: {member.name}")
        return EXIT_OK

    if sub == "run":
        return _run_group(args, services, group)

    return EXIT_FAILURE


def _run_group(args: argparse.Namespace, services: Services, group) -> int:
    if not group.scripts:
        print(f"The group {group.name} contains no scripts.")
        return EXIT_OK

    members, missing = resolve_members(group.scripts, services.discover())
    if missing:
        # Missing files still run so the runner reports them and stops the group
        by_path = {m.path: m for m in members}
        members = [
            by_path.get(p) or ScriptEntry(path=p, name=p.name, description="")
            for p in group.scripts
        ]

    def on_progress(index: int, total: int, label: str) -> None:
        if args.format == "plain":
            print(f"[{index + 1}/{total}] {label}", file=sys.stderr)

    def on_item_done(entry: ScriptEntry, result: ExecutionResult) -> None:
        if args.format == "json":
            print(json.dumps(_result_json(result)))
        else:
            _print_result(args, result)

    def on_group_done(summary) -> None:
        if args.format == "plain":
            print(summary.message, file=sys.stderr)

    observer = CallbackObserver(on_item_done, on_group_done, on_progress)
    if args.terminal:
        summary = services.orchestrator.run_in_terminals(members, observer)
    else:
        summary = services.orchestrator.run_sequential(members, observer, elevated=args.sudo)

    return EXIT_OK if summary.failed == 0 else EXIT_FAILURE


def cmd_doctor(args: argparse.Namespace, services: Services) -> int:
    """Check tools and summarize the catalog."""
    scripts = services.discover()
    summary = services.classifier.classify_all(scripts)
    context = services.context

    tools = {tool: context.check_tool(tool) for tool in ("bash", "sudo")}
    terminals = [t for t in services.settings.terminals if context.check_tool(t)]
    not_executable = sorted(s.name for s in scripts if not s.executable)
    problems = [t for t, ok in tools.items() if not ok]

    if args.format == "json":
        print(json.dumps({
            "scripts_total": summary.total,
            "scripts_needing_sudo": summary.elevated_count,
            "scripts_not_executable": not_executable,
            "tools": tools,
            "terminals": terminals,
        }, indent=2))
    else:
        print("=== scriptdeck doctor ===\n")
        print(f"Scripts directory: {services.settings.scripts_dir}")
        print(f"Scripts: {summary.total} total, {summary.elevated_count} need sudo")
        if not_executable:
            print(f"Not executable ({len(not_executable)}): {', '.join(not_executable)}")
        print()
        print("Required tools:")
        for tool, ok in tools.items():
            print(f"  {tool}: {'✓' if ok else '✗ MISSING'}")
        print()
        if terminals:
            print(f"Terminals: {', '.join(terminals)}")
        else:
            print("Terminals: none found (run --terminal will fail)")

    return EXIT_FAILURE if problems else EXIT_OK


def cmd_logs(args: argparse.Namespace, services: Services) -> int:
    """Show event log entries."""
    entries = query_logs(
        services.settings.log_dir,
        args.component,
        log_date=args.log_date,
        min_level=args.level,
        limit=args.limit,
    )
    if args.format == "json":
        print(json.dumps(entries, indent=2))
        return EXIT_OK
    for entry in entries:
        print(
            f"{entry.get('timestamp', '')}  {entry.get('level', '').upper():7} "
            f"{entry.get('component', ''):11} {entry.get('message', '')}"
        )
    return EXIT_OK


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "scan": cmd_scan,
    "run": cmd_run,
    "chmod": cmd_chmod,
    "group": cmd_group,
    "doctor": cmd_doctor,
    "logs": cmd_logs,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        services = build_services(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        return COMMANDS[args.command](args, services)
    except InvalidInputError as e:
        print(str(e), file=sys.stderr)
        return EXIT_NOT_FOUND
    except StorageError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
