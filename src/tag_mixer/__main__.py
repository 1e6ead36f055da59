"""CLI entrypoint for Steam Tag Mixer."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or package root so it's found regardless of cwd."""
    # Package root = directory containing pyproject.toml / .env (parent of src/)
    _this_file = Path(__file__).resolve()
    _package_root = _this_file.parent.parent.parent  # src/tag_mixer/__main__.py -> repo root
    for dir_ in (Path.cwd(), Path.cwd().parent, _package_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


_load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all supported modes."""
    p = argparse.ArgumentParser(
        prog="tag-mixer",
        description="Steam Tag Mixer - generate a web game from a random Steam tag combination.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    # -- Sub-commands ---------------------------------------------------------
    sub = p.add_subparsers(dest="command")

    # Run sub-command
    run_p = sub.add_parser("run", help="Run the full generation pipeline once.")
    run_p.add_argument(
        "--tags",
        nargs="+",
        default=None,
        metavar="TAG",
        help="Use these tags instead of a random selection.",
    )
    run_p.add_argument("--min-tags", type=int, default=None, help="Minimum random tags (default: 2).")
    run_p.add_argument("--max-tags", type=int, default=None, help="Maximum random tags (default: 5).")
    run_p.add_argument(
        "--no-publish",
        action="store_true",
        help="Skip git init / GitHub repository creation / commits / push.",
    )
    run_p.add_argument(
        "--outputs-dir",
        type=str,
        default=None,
        help="Directory that receives run workspaces (default: $TAG_MIXER_OUTPUTS_DIR or ./outputs).",
    )
    run_p.add_argument(
        "--assets-dir",
        type=str,
        default=None,
        help="Directory holding skills/ and agents/ (default: $TAG_MIXER_ASSETS_DIR or ./.claude).",
    )
    run_p.add_argument(
        "--claude-bin",
        type=str,
        default=None,
        help="Claude Code CLI binary (default: $TAG_MIXER_CLAUDE_BIN or claude).",
    )
    run_p.add_argument("--model", type=str, default=None, help="Model passed to Claude Code.")
    run_p.add_argument(
        "--full-auto",
        action="store_true",
        help="Let the agent edit files and run commands without permission prompts.",
    )
    run_p.add_argument(
        "--refinement-mode",
        choices=["internal", "cooperative"],
        default=None,
        help="How the implementation phase iterates (default: internal).",
    )
    run_p.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Implementation refinement iterations (default: 10).",
    )
    run_p.add_argument(
        "--require-completion",
        action="store_true",
        help="Fail the implementation phase if the completion marker never appears.",
    )

    # Serve sub-command
    serve_p = sub.add_parser("serve", help="Run the webhook server.")
    serve_p.add_argument("--host", type=str, default="0.0.0.0", help="Bind address (default 0.0.0.0)")
    serve_p.add_argument("--port", type=int, default=None, help="Port (default $PORT or 3847)")

    # Tags sub-command
    tags_p = sub.add_parser("tags", help="Print a random tag selection as JSON.")
    tags_p.add_argument("--min", dest="min_count", type=int, default=2, help="Minimum tags (default 2)")
    tags_p.add_argument("--max", dest="max_count", type=int, default=5, help="Maximum tags (default 5)")
    tags_p.add_argument("--catalog", type=str, default="", help="Alternative tag catalog JSON file.")

    return p


def _config_from_args(args: argparse.Namespace):
    from tag_mixer.pipeline.phases import PipelineConfig

    overrides = {
        "tags": args.tags,
        "min_tags": args.min_tags,
        "max_tags": args.max_tags,
        "outputs_dir": args.outputs_dir,
        "assets_dir": args.assets_dir,
        "claude_binary": args.claude_bin,
        "model": args.model,
        "refinement_mode": args.refinement_mode,
        "implement_max_iterations": args.max_iterations,
    }
    data = {k: v for k, v in overrides.items() if v is not None}
    if args.no_publish:
        data["publish"] = False
    if args.full_auto:
        data["full_auto"] = True
    if args.require_completion:
        data["require_completion_marker"] = True
    return PipelineConfig(**data)


def _run_command(args: argparse.Namespace) -> int:
    from tag_mixer.pipeline.orchestrator import run_pipeline

    try:
        config = _config_from_args(args)
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    result = run_pipeline(config)
    print(json.dumps(result.to_summary(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def _tags_command(args: argparse.Namespace) -> int:
    from tag_mixer.tags import load_tags, select_tags

    catalog = load_tags(Path(args.catalog)) if args.catalog else None
    try:
        selection = select_tags(args.min_count, args.max_count, catalog=catalog)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    print(json.dumps({"count": selection.count, "tags": selection.tag_names}, ensure_ascii=False))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the appropriate mode."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup (early, for all modes) --------------------------------
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "run":
        return _run_command(args)
    if args.command == "serve":
        from tag_mixer.server import main as server_main

        server_main(host=args.host, port=args.port)
        return 0
    if args.command == "tags":
        return _tags_command(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
