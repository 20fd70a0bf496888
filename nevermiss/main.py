from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from enum import IntEnum
from typing import Any, Optional, Sequence

from nevermiss.domain.enums import DateType, OverdueAction
from nevermiss.domain.errors import NeverMissError
from nevermiss.services import lunar_service
from nevermiss.services.recurrence_calculator import (
    calculate_due_date,
    calculate_start_date,
    format_instant,
    parse_instant,
)

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    USAGE = 2
    CONFIG_ERROR = 3
    NOT_FOUND = 6


class CLIError(Exception):
    def __init__(self, message: str, code: ExitCode = ExitCode.ERROR) -> None:
        super().__init__(message)
        self.code = code


def _load_pattern(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CLIError(f"--pattern is not valid JSON: {exc}", ExitCode.USAGE) from exc
    if not isinstance(data, dict):
        raise CLIError("--pattern must be a JSON object", ExitCode.USAGE)
    return data


def _date_type(args: argparse.Namespace) -> DateType:
    return DateType.LUNAR if getattr(args, "lunar", False) else DateType.SOLAR


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


class _Runtime:
    """Database-backed collaborators, opened only by commands that need them."""

    def __init__(self, verbose: bool = False) -> None:
        try:
            from nevermiss.config import SETTINGS
            from nevermiss.infra.db import create_schema, init_db
            from nevermiss.infra.logging import setup_logging
        except RuntimeError as exc:
            raise CLIError(str(exc), ExitCode.CONFIG_ERROR) from exc

        from nevermiss.infra.notifications import SqlNotificationScheduler
        from nevermiss.infra.repository import TaskRepository
        from nevermiss.infra.storage import SqlCycleStorage
        from nevermiss.services.cycle_service import CycleService

        setup_logging("DEBUG" if verbose else None)
        init_db()
        create_schema()

        self.settings = SETTINGS
        self.tasks = TaskRepository()
        self.storage = SqlCycleStorage()
        self.notifications = SqlNotificationScheduler()
        self.service = CycleService(self.storage, self.notifications, history=self.storage)

    def require_task(self, task_id: int):
        task = self.tasks.get_task(task_id)
        if task is None:
            raise CLIError(f"task {task_id} not found", ExitCode.NOT_FOUND)
        return task

    async def require_current_cycle(self, task):
        cycle = task.current_cycle or await self.service.get_current_cycle(task.id)
        if cycle is None:
            raise CLIError(f"task {task.id} has no open cycle", ExitCode.NOT_FOUND)
        return cycle


def _cycle_dict(cycle) -> dict[str, Any]:
    data = asdict(cycle)
    for key in ("start_date", "due_date", "completed_date", "created_at"):
        if data[key] is not None:
            data[key] = format_instant(data[key])
    return data


def cmd_lunar(args: argparse.Namespace) -> int:
    info = lunar_service.get_full_lunar_info(parse_instant(args.date))
    _print_json(asdict(info))
    return ExitCode.SUCCESS


def cmd_to_solar(args: argparse.Namespace) -> int:
    lunar = lunar_service.parse_lunar_date(args.text)
    solar = lunar_service.lunar_to_solar(lunar.year, lunar.month, lunar.day, lunar.is_leap)
    print(solar.isoformat())
    return ExitCode.SUCCESS


def cmd_due(args: argparse.Namespace) -> int:
    print(calculate_due_date(args.start, _load_pattern(args.pattern), _date_type(args)))
    return ExitCode.SUCCESS


def cmd_start(args: argparse.Namespace) -> int:
    print(calculate_start_date(args.due, _load_pattern(args.pattern), _date_type(args)))
    return ExitCode.SUCCESS


def cmd_add(args: argparse.Namespace) -> int:
    runtime = _Runtime(args.verbose)
    task = runtime.tasks.create_task({
        "title": args.title,
        "description": args.description,
        "recurrence_pattern": _load_pattern(args.pattern),
        "date_type": _date_type(args).value,
        "auto_restart": not args.no_auto_restart,
        "reminder_offset": (
            args.reminder if args.reminder is not None else runtime.settings.default_reminder_offset
        ),
        "reminder_unit": args.reminder_unit or runtime.settings.default_reminder_unit,
    })
    try:
        cycle = asyncio.run(runtime.service.create_initial_cycle(task, args.start, args.due))
    except NeverMissError:
        logger.info("Removing task %s after its first cycle could not be created", task.id)
        runtime.tasks.delete_task(task.id)
        raise
    _print_json({"task_id": task.id, "cycle": _cycle_dict(cycle)})
    return ExitCode.SUCCESS


def cmd_check_overdue(args: argparse.Namespace) -> int:
    runtime = _Runtime(args.verbose)
    report = asyncio.run(runtime.service.check_overdue_cycles(runtime.tasks.list_tasks(active_only=True)))
    _print_json(asdict(report))
    return ExitCode.SUCCESS


def cmd_complete(args: argparse.Namespace) -> int:
    runtime = _Runtime(args.verbose)
    task = runtime.require_task(args.task_id)

    async def run():
        cycle = await runtime.require_current_cycle(task)
        return await runtime.service.complete_cycle(task, cycle)

    result = asyncio.run(run())
    _print_json({
        "completed": _cycle_dict(result.completed),
        "new_cycle": _cycle_dict(result.new_cycle) if result.new_cycle else None,
    })
    return ExitCode.SUCCESS


def cmd_overdue(args: argparse.Namespace) -> int:
    runtime = _Runtime(args.verbose)
    task = runtime.require_task(args.task_id)

    async def run():
        cycle = await runtime.require_current_cycle(task)
        return await runtime.service.handle_overdue(task, cycle, args.action)

    _print_json(_cycle_dict(asyncio.run(run())))
    return ExitCode.SUCCESS


def cmd_notifications(args: argparse.Namespace) -> int:
    runtime = _Runtime(args.verbose)
    if args.upcoming:
        days = args.days if args.days is not None else runtime.settings.notification_lookahead_days
        pending = runtime.notifications.list_upcoming_notifications(days)
    else:
        pending = runtime.notifications.list_due_notifications()
    _print_json([
        {**asdict(item), "trigger_at": format_instant(item.trigger_at)} for item in pending
    ])
    return ExitCode.SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nevermiss", description="Recurring task cycles and lunar dates")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log calculation details")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("lunar", help="Show lunar calendar info for a solar date")
    p.add_argument("date", help="ISO date or instant")
    p.set_defaults(func=cmd_lunar)

    p = sub.add_parser("to-solar", help="Convert lunar text such as 二零二四年正月初一")
    p.add_argument("text")
    p.set_defaults(func=cmd_to_solar)

    for name, anchor, func in (("due", "start", cmd_due), ("start", "due", cmd_start)):
        p = sub.add_parser(name, help=f"Compute the {name} date of a cycle from its {anchor} date")
        p.add_argument(anchor)
        p.add_argument("--pattern", required=True, help="Recurrence pattern as JSON")
        p.add_argument("--lunar", action="store_true", help="Treat the pattern as lunar")
        p.set_defaults(func=func)

    p = sub.add_parser("add", help="Create a task and its first cycle")
    p.add_argument("title")
    p.add_argument("--pattern", required=True, help="Recurrence pattern as JSON")
    p.add_argument("--description", default="")
    p.add_argument("--lunar", action="store_true")
    p.add_argument("--start", help="Cycle start (ISO); defaults to now")
    p.add_argument("--due", help="Cycle due date (ISO); start is derived when omitted")
    p.add_argument("--no-auto-restart", action="store_true")
    p.add_argument("--reminder", type=int, help="Reminder offset before the due date")
    p.add_argument("--reminder-unit", choices=["minutes", "hours", "days"])
    p.set_defaults(func=cmd_add, uses_db=True)

    p = sub.add_parser("check-overdue", help="Flag overdue cycles of active tasks")
    p.set_defaults(func=cmd_check_overdue, uses_db=True)

    p = sub.add_parser("complete", help="Complete the current cycle of a task")
    p.add_argument("task_id", type=int)
    p.set_defaults(func=cmd_complete, uses_db=True)

    p = sub.add_parser("overdue", help="Remediate an overdue cycle")
    p.add_argument("task_id", type=int)
    p.add_argument("--action", required=True, choices=[action.value for action in OverdueAction])
    p.set_defaults(func=cmd_overdue, uses_db=True)

    p = sub.add_parser("notifications", help="List pending reminders")
    p.add_argument("--upcoming", action="store_true", help="Include reminders in the lookahead window")
    p.add_argument("--days", type=int, help="Lookahead window in days")
    p.set_defaults(func=cmd_notifications, uses_db=True)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "uses_db", False):
        logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        return int(args.func(args))
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(exc.code)
    except NeverMissError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return int(ExitCode.ERROR)


if __name__ == "__main__":
    sys.exit(main())
