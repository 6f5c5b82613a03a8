# src/conveyor/cli.py
"""
Interface de linha de comando do Conveyor.

Comandos:
    conveyor validate <definição>   valida config + definição (sem executar)
    conveyor plan <definição>       mostra as ondas de execução paralela
    conveyor run <definição>        executa o pipeline

Códigos de saída:
    0 → sucesso
    1 → run executada com falha
    2 → erro de configuração ou de definição
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from conveyor import __version__
from conveyor.core.config import ConfigError
from conveyor.core.definition import DefinitionError
from conveyor.runner import describe_waves, prepare_pipeline, run_pipeline


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

DEFAULT_CONFIG = "config/defaults.yaml"
DEFAULT_LOCAL_CONFIG = "config/local.yaml"


def _add_config_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("definition", help="Pipeline definition file (YAML/JSON)")
    p.add_argument("--config", default=DEFAULT_CONFIG, help="Defaults config file")
    p.add_argument("--local-config", default=DEFAULT_LOCAL_CONFIG, help="Optional local overrides")


def cmd_validate(args: argparse.Namespace) -> int:
    plan = prepare_pipeline(args.definition, args.config, args.local_config)
    post = sum(len(v) for v in plan.post.values())
    print(f"OK: pipeline '{plan.definition.name}' ({len(plan.stages)} stages, {post} post handlers)")
    return EXIT_OK


def cmd_plan(args: argparse.Namespace) -> int:
    plan = prepare_pipeline(args.definition, args.config, args.local_config)
    waves = describe_waves(plan)
    if args.json:
        print(json.dumps([{"wave": i, "stages": stages} for i, stages in waves], indent=2))
        return EXIT_OK
    for i, stages in waves:
        print(f"wave {i}:")
        for s in stages:
            agent = s["agent"] or "-"
            print(f"  {s['id']}\t{s['type']}\tagent={agent}")
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    run = run_pipeline(
        args.definition,
        args.config,
        args.local_config,
        build_number=args.build_number,
        run_id=args.run_id,
    )
    for sid, r in run.result.stages.items():
        print(f"{r.status.value:8} {sid}: {r.summary}")
    for sid, r in run.result.post.items():
        print(f"{r.status.value:8} post/{sid}: {r.summary}")
    for w in run.result.warnings:
        print(f"WARNING: {w}", file=sys.stderr)
    print(f"run {run.result.status.value} (build {run.build_number}) → {run.run_dir}")
    return EXIT_OK if run.ok else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="conveyor", description="Declarative build/deploy pipeline engine")
    parser.add_argument("--version", action="version", version=f"conveyor {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate config and pipeline definition")
    _add_config_args(validate_parser)
    validate_parser.set_defaults(func=cmd_validate)

    plan_parser = subparsers.add_parser("plan", help="Show parallel execution waves")
    _add_config_args(plan_parser)
    plan_parser.add_argument("--json", action="store_true", help="Print waves as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    run_parser = subparsers.add_parser("run", help="Run the pipeline")
    _add_config_args(run_parser)
    run_parser.add_argument("--build-number", type=int, default=None)
    run_parser.add_argument("--run-id", default=None)
    run_parser.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ConfigError, DefinitionError) as e:
        print(f"error: {e.__class__.__name__}: {e}", file=sys.stderr)
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
