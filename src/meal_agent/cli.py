"""CLI entry point for the meal planning agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".meal-agent"


def get_state_dir(args: argparse.Namespace) -> Path:
    return Path(args.state_dir or os.environ.get("MEAL_AGENT_STATE_DIR") or DEFAULT_STATE_DIR)


def load_settings(args: argparse.Namespace) -> dict:
    from meal_agent.config import apply_cli_overrides, load_config

    state_dir = get_state_dir(args)
    config = load_config(state_dir)
    return apply_cli_overrides(
        config,
        backend=args.backend,
        model=args.model,
        meal_types=args.meal_types,
        recipe_dir=args.recipe_dir,
    )


def build_service(args: argparse.Namespace):
    from meal_agent.backends import build_backend
    from meal_agent.file_stores import (
        FileAisleOverrideStore,
        FileMealPlanStore,
        FileProfileStore,
        FileRunStore,
    )
    from meal_agent.orchestrator import Orchestrator
    from meal_agent.recipe_files import MarkdownRecipeStore
    from meal_agent.runs import RunService

    state_dir = get_state_dir(args)
    config = load_settings(args)

    recipe_dir = Path(config["recipes"]["dir"])
    if not recipe_dir.is_absolute():
        recipe_dir = state_dir / recipe_dir

    orchestrator = Orchestrator(
        recipe_store=MarkdownRecipeStore(recipe_dir),
        backend=build_backend(config),
        aisle_overrides=FileAisleOverrideStore(state_dir),
        config=config,
    )
    return RunService(
        run_store=FileRunStore(state_dir),
        profile_store=FileProfileStore(state_dir),
        meal_plan_store=FileMealPlanStore(state_dir),
        orchestrator=orchestrator,
        default_span_days=int(config["planning"].get("default_span_days", 7)),
    )


def print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


def format_run_markdown(run, issues=()) -> str:
    """Human-readable run summary with the planned days and any dropped entries."""
    catalog = run.output_draft.catalog_map()

    def title(recipe_id: str) -> str:
        recipe = catalog.get(recipe_id)
        return recipe.title if recipe else recipe_id

    lines = [
        f"# Run {run.id}",
        "",
        f"**Status:** {run.status.value}  ",
        f"**Dates:** {run.date_range.start} to {run.date_range.end}",
        "",
    ]
    if run.error_message:
        lines += [f"**Last error:** {run.error_message}", ""]
    if run.summary.why_this_plan:
        lines += [run.summary.why_this_plan, ""]

    for day in run.output_draft.meal_plan_days:
        lines.append(f"## {day.date}")
        lines.append("")
        for meal in day.meals:
            extra = " (leftovers)" if meal.source.value == "leftovers" else ""
            lines.append(f"- **{meal.type.value.title()}:** {title(meal.recipe_id)}{extra}")
        for session in day.cooking_sessions:
            lines.append(
                f"- *Cook ({session.time_slot.value}):* {title(session.recipe_id)} "
                f"x{session.servings}"
            )
        lines.append("")

    if run.summary.unmet_constraints:
        lines += ["## Unmet constraints", ""]
        lines += [f"- {c}" for c in run.summary.unmet_constraints]
        lines.append("")
    if run.summary.notes:
        lines += ["## Notes", ""]
        lines += [f"- {n}" for n in run.summary.notes]
        lines.append("")
    if issues:
        lines += ["## Dropped entries", ""]
        for issue in issues:
            what = issue.recipe_id or "day"
            lines.append(f"- {issue.date or '?'} {what}: {issue.detail}")
        lines.append("")
    return "\n".join(lines)


def cmd_create_run(args: argparse.Namespace) -> None:
    service = build_service(args)
    run = service.create_run(args.user, start=args.start, end=args.end)
    print_json({"run_id": run.id, "date_range": run.date_range.to_dict(), "status": run.status.value})


def cmd_generate(args: argparse.Namespace) -> None:
    service = build_service(args)
    result = asyncio.run(service.generate(args.run_id, args.user))
    print(format_run_markdown(result.run, result.issues))


def cmd_revise(args: argparse.Namespace) -> None:
    service = build_service(args)
    result = asyncio.run(service.revise(args.run_id, args.user, args.instruction))
    print(format_run_markdown(result.run, result.issues))


def cmd_approve(args: argparse.Namespace) -> None:
    service = build_service(args)
    run = service.approve(args.run_id, args.user)
    print_json({"run_id": run.id, "status": run.status.value, "approved_at": run.approved_at.isoformat()})


def cmd_apply(args: argparse.Namespace) -> None:
    service = build_service(args)
    run = service.apply(args.run_id, args.user)
    print_json(
        {
            "run_id": run.id,
            "status": run.status.value,
            "applied_days": len(run.output_draft.meal_plan_days),
        }
    )


def cmd_edit(args: argparse.Namespace) -> None:
    if args.file:
        raw = Path(args.file).read_text()
    else:
        raw = sys.stdin.read()
    data = json.loads(raw)
    days = data.get("meal_plan_days", []) if isinstance(data, dict) else data

    service = build_service(args)
    result = service.edit_draft(args.run_id, args.user, days, apply_to_plan=args.apply)
    print_json(
        {
            "run_id": result.run.id,
            "status": result.run.status.value,
            "applied_days": result.applied_days,
            "violations": [v.to_dict() for v in result.run.violations],
            "issues": [i.to_dict() for i in result.issues],
        }
    )


def cmd_show(args: argparse.Namespace) -> None:
    service = build_service(args)
    run = service.get_run(args.run_id, args.user)
    if args.format == "json":
        print_json(run.to_dict())
    else:
        print(format_run_markdown(run))


def cmd_list(args: argparse.Namespace) -> None:
    service = build_service(args)
    runs = service.list_runs(args.user, limit=args.limit)
    print_json(
        [
            {
                "run_id": r.id,
                "status": r.status.value,
                "date_range": r.date_range.to_dict(),
                "violations": len(r.violations),
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in runs
        ]
    )


def cmd_shopping_list(args: argparse.Namespace) -> None:
    from meal_agent.models import ShoppingList
    from meal_agent.shopping import build_shopping_table, format_shopping_json, format_shopping_markdown

    service = build_service(args)
    run = service.get_run(args.run_id, args.user)
    shopping = run.output_draft.shopping_list or ShoppingList()

    if args.format == "json":
        print(format_shopping_json(shopping))
    elif args.format == "table":
        from rich.console import Console

        Console().print(build_shopping_table(shopping))
    else:
        print(format_shopping_markdown(shopping))


def cmd_aisle(args: argparse.Namespace) -> None:
    from meal_agent.file_stores import FileAisleOverrideStore

    store = FileAisleOverrideStore(get_state_dir(args))
    name, aisle = store.upsert(args.user, args.name, args.aisle)
    print_json({"normalized_name": name, "aisle": aisle})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meal-agent",
        description="Draft, validate and apply meal plans from a recipe catalog",
    )
    parser.add_argument(
        "--state-dir",
        type=str,
        default=None,
        help=f"Directory holding runs, profiles and config (default: {DEFAULT_STATE_DIR})",
    )
    parser.add_argument(
        "--user",
        type=str,
        default=os.environ.get("MEAL_AGENT_USER", "local"),
        help="User id the runs belong to (default: $MEAL_AGENT_USER or 'local')",
    )
    parser.add_argument("--backend", choices=["solver", "claude"], default=None)
    parser.add_argument("--model", type=str, default=None, help="Model for the claude backend")
    parser.add_argument("--meal-types", type=str, default=None, help="Comma-separated meal types")
    parser.add_argument("--recipe-dir", type=str, default=None, help="Markdown recipe directory")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Logging verbosity (default: info)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # create-run
    p_create = sub.add_parser("create-run", help="Open a new draft run")
    p_create.add_argument("--start", type=str, help="YYYY-MM-DD (default: today)")
    p_create.add_argument("--end", type=str, help="YYYY-MM-DD (default: start + 6 days)")
    p_create.set_defaults(func=cmd_create_run)

    # generate
    p_gen = sub.add_parser("generate", help="Generate a draft plan for a run")
    p_gen.add_argument("run_id")
    p_gen.set_defaults(func=cmd_generate)

    # revise
    p_rev = sub.add_parser("revise", help="Regenerate a draft with an instruction")
    p_rev.add_argument("run_id")
    p_rev.add_argument("instruction", help='e.g. "no pork, breakfast and dinner only"')
    p_rev.set_defaults(func=cmd_revise)

    # approve
    p_approve = sub.add_parser("approve", help="Approve a draft with no violations")
    p_approve.add_argument("run_id")
    p_approve.set_defaults(func=cmd_approve)

    # apply
    p_apply = sub.add_parser("apply", help="Commit an approved run to the meal plan")
    p_apply.add_argument("run_id")
    p_apply.set_defaults(func=cmd_apply)

    # edit
    p_edit = sub.add_parser("edit", help="Replace a draft's days from JSON")
    p_edit.add_argument("run_id")
    p_edit.add_argument("file", nargs="?", default=None, help="JSON file (default: stdin)")
    p_edit.add_argument(
        "--apply",
        action="store_true",
        help="Commit the edited days straight to the meal plan",
    )
    p_edit.set_defaults(func=cmd_edit)

    # show
    p_show = sub.add_parser("show", help="Show a run")
    p_show.add_argument("run_id")
    p_show.add_argument("--format", type=str, choices=["json", "markdown"], default="markdown")
    p_show.set_defaults(func=cmd_show)

    # list
    p_list = sub.add_parser("list", help="List recent runs")
    p_list.add_argument("--limit", type=int, default=20)
    p_list.set_defaults(func=cmd_list)

    # shopping-list
    p_shop = sub.add_parser("shopping-list", help="Show a run's shopping list")
    p_shop.add_argument("run_id")
    p_shop.add_argument(
        "--format", type=str, choices=["json", "markdown", "table"], default="markdown"
    )
    p_shop.set_defaults(func=cmd_shopping_list)

    # aisle
    p_aisle = sub.add_parser("aisle", help="Set the aisle for an ingredient")
    p_aisle.add_argument("name", help="Ingredient name, e.g. 'tahini'")
    p_aisle.add_argument("aisle", help="Aisle, e.g. 'International'")
    p_aisle.set_defaults(func=cmd_aisle)

    return parser


def main(argv: list[str] | None = None) -> None:
    from meal_agent.errors import PlanningError, ValidationBlocked
    from meal_agent.log import setup_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else None
    setup_logging(level=args.log_level, log_file=log_file)

    try:
        args.func(args)
    except ValidationBlocked as e:
        logger.error("%s", e)
        for v in e.violations:
            logger.error("  %s", v.message)
        sys.exit(1)
    except (PlanningError, ValueError) as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
