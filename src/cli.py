#!/usr/bin/env python3
"""CLI entry point for stackctl.

Commands:
- generate:   Print a stack's rendered template
- deploy:     Create/update stacks in dependency order
- terminate:  Delete stacks, dependents first
- update:     Update one stack through a reviewed change-set
- outputs:    Print deployed outputs
- parameters: Print deployed parameters (flagging local divergence)
- values:     Print a stack's local config values
- status:     Print deployment status
- ls:         List the project's stacks
- set-policy: Apply stack policy documents
- check:      Validate a rendered template with the provider
- exports:    Print provider exports
"""

import argparse
import json
import logging
import sys
from typing import Optional

from changeset import ChangeSetStateError, update_stack
from config import ConfigError, Options
from context import Context
from orchestrator.executor import StackExecutor
from orchestrator.graph import OrchestrationError
from orchestrator.state import RunResult
from outputs import (
    dump_outputs,
    dump_parameters,
    dump_values,
    list_exports,
    refresh_many,
)
from project import load_project
from prompt import always_yes, prompt_confirm
from provider import CloudFormationProvider, RemoteAPIError
from resolver import TemplateResolutionError, TemplateResolver

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

FATAL_ERRORS = (
    ConfigError,
    TemplateResolutionError,
    RemoteAPIError,
    ChangeSetStateError,
    OrchestrationError,
)


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='stackctl',
        description='Generate, deploy and manage interdependent CloudFormation stacks',
    )
    parser.add_argument('--config', '-c', help='Project document (default: STACKCTL_CONFIG or config.yml)')
    parser.add_argument('--region', help='Default region (overrides the project document)')
    parser.add_argument('--profile', help='AWS profile name')
    parser.add_argument('--max-workers', type=int, help='Parallel stack operations')
    parser.add_argument('--max-remote-calls', type=int, help='Concurrent provider calls')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--json-output', action='store_true',
                        help='Output structured JSON to stdout (logs to stderr)')

    sub = parser.add_subparsers(dest='command', metavar='<command>')

    p = sub.add_parser('generate', help='Print rendered template')
    p.add_argument('stack')
    p.add_argument('--source', '-t', help='Template source overriding the configured one')

    p = sub.add_parser('deploy', help='Create or update stacks in dependency order')
    p.add_argument('stacks', nargs='*')
    p.add_argument('--all', action='store_true', help='Deploy every stack in the project')
    p.add_argument('--dry-run', action='store_true', help='Show tiers without deploying')
    p.add_argument('--review', action='store_true',
                   help='Update existing stacks through change-sets with confirmation')
    p.add_argument('--yes', '-y', action='store_true', help='Auto-confirm change-sets')

    p = sub.add_parser('terminate', help='Delete stacks, dependents first')
    p.add_argument('stacks', nargs='*')
    p.add_argument('--all', action='store_true', help='Terminate every stack in the project')
    p.add_argument('--dry-run', action='store_true', help='Show tiers without deleting')
    p.add_argument('--yes', '-y', action='store_true', help='Skip confirmation prompt')

    p = sub.add_parser('update', help='Update a stack via change-set')
    p.add_argument('stack')
    p.add_argument('--yes', '-y', action='store_true', help='Execute without prompting')

    for name, text in (('outputs', 'Print stack outputs'),
                       ('parameters', 'Print parameters of deployed stacks'),
                       ('status', 'Print deployment status')):
        p = sub.add_parser(name, help=text)
        p.add_argument('stacks', nargs='*')

    sub.add_parser('ls', help='List stacks in the project')

    p = sub.add_parser('values', help='Print stack values from config in YAML')
    p.add_argument('stack')

    p = sub.add_parser('set-policy', help='Apply configured stack policies')
    p.add_argument('stacks', nargs='*')
    p.add_argument('--all', action='store_true', help='Apply to every stack with a policy')

    p = sub.add_parser('check', help='Validate rendered template with the provider')
    p.add_argument('stack')

    sub.add_parser('exports', help='Print provider exports')
    return parser


def build_context(args) -> Context:
    """Load the project and create the provider client."""
    project = load_project(args.config)
    options = Options.from_env(
        region=args.region or project.region,
        profile=args.profile,
        max_workers=args.max_workers,
        max_remote_calls=args.max_remote_calls,
    )
    provider = CloudFormationProvider(
        region=options.region,
        profile=options.profile,
        max_remote_calls=options.max_remote_calls,
    )
    return Context(project=project.name, registry=project.registry, provider=provider,
                   options=options, base_dir=project.base_dir)


def _require_stack(ctx: Context, name: str):
    stack = ctx.registry.get(name)
    if stack is None:
        raise ConfigError(f"stack [{name}] not found in config")
    return stack


def _select(ctx: Context, names: list[str], select_all: bool) -> list[str]:
    if select_all:
        names = ctx.registry.names()
    if not names:
        raise ConfigError("please specify stack(s), or --all")
    ctx.registry.mark_actioned(names)
    return names


def _report(result: RunResult, json_output: bool) -> int:
    if json_output:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for name, r in sorted(result.results.items()):
            detail = r.error or r.message
            print(f"  {name:<24} {r.status:<10} {detail}")
    return 0 if result.success else 1


def cmd_generate(ctx: Context, args) -> int:
    stack = _require_stack(ctx, args.stack)
    if args.source:
        stack.source = args.source
        stack.template_body = ''
    logger.debug(f"generating a template for [{stack.stackname}]")
    print(TemplateResolver(ctx).resolve(stack))
    return 0


def cmd_deploy(ctx: Context, args) -> int:
    _select(ctx, args.stacks, args.all)
    confirm = None
    if args.review:
        confirm = always_yes if args.yes else prompt_confirm
    result = StackExecutor(ctx, confirm=confirm, dry_run=args.dry_run).deploy()
    return _report(result, args.json_output)


def cmd_terminate(ctx: Context, args) -> int:
    names = _select(ctx, args.stacks, args.all)
    if not args.dry_run and not args.yes:
        print(f"\nWARNING: This will delete: {', '.join(names)}")
        print("This action cannot be undone.")
        try:
            confirmed = prompt_confirm("Continue?")
        except ConfigError:
            ctx.registry.clear_actioned()
            raise
        if not confirmed:
            ctx.registry.clear_actioned()
            print("Aborted.")
            return 1
    result = StackExecutor(ctx, dry_run=args.dry_run).terminate()
    return _report(result, args.json_output)


def cmd_update(ctx: Context, args) -> int:
    _require_stack(ctx, args.stack)
    confirm = always_yes if args.yes else prompt_confirm
    change = update_stack(ctx, args.stack, confirm)
    if args.json_output:
        print(json.dumps({'stack': args.stack, 'change_set': change.name,
                          'state': change.state.value}, indent=2))
    return 0


def _fetch(ctx: Context, names: list[str]) -> tuple[list[str], int]:
    for name in names:
        _require_stack(ctx, name)
    errors = refresh_many(ctx, names)
    ok = [n for n in names if errors[n] is None]
    return ok, 0 if len(ok) == len(names) else 1


def cmd_outputs(ctx: Context, args) -> int:
    if not args.stacks:
        raise ConfigError("please specify stack(s) to check")
    ok, rc = _fetch(ctx, args.stacks)
    for name in ok:
        stack = ctx.registry.must_get(name)
        if args.json_output:
            print(json.dumps({name: [dict(i.outputs) for i in stack.output or []]},
                             indent=2, sort_keys=True))
            continue
        for dumped in dump_outputs(stack):
            print(dumped)
    return rc


def cmd_parameters(ctx: Context, args) -> int:
    if not args.stacks:
        raise ConfigError("please specify stack(s) to check")
    ok, rc = _fetch(ctx, args.stacks)
    for name in ok:
        stack = ctx.registry.must_get(name)
        print(f"{name}:")
        for line in dump_parameters(stack):
            print(f"  {line}")
    return rc


def cmd_status(ctx: Context, args) -> int:
    names = args.stacks or ctx.registry.names()
    for name in names:
        _require_stack(ctx, name)
    errors = refresh_many(ctx, names)
    rc = 0
    for name in names:
        if errors[name] is not None:
            print(f"  {name:<24} error: {errors[name]}")
            rc = 1
            continue
        print(f"  {name:<24} {ctx.registry.must_get(name).status.value}")
    return rc


def cmd_ls(ctx: Context, args) -> int:
    for name in ctx.registry.names():
        print(name)
    return 0


def cmd_values(ctx: Context, args) -> int:
    print(dump_values(_require_stack(ctx, args.stack)))
    return 0


def cmd_set_policy(ctx: Context, args) -> int:
    names = args.stacks
    if args.all:
        names = [n for n in ctx.registry.names() if ctx.registry.must_get(n).policy]
    _select(ctx, names, select_all=False)
    result = StackExecutor(ctx).apply_policies()
    return _report(result, args.json_output)


def cmd_check(ctx: Context, args) -> int:
    stack = _require_stack(ctx, args.stack)
    template = TemplateResolver(ctx).resolve(stack)
    response = ctx.provider.validate_template(template, ctx.regions_for(stack)[0])
    print(f"{stack.name}: template is valid")
    for param in response.get('Parameters', []):
        print(f"  parameter {param.get('ParameterKey')}")
    if response.get('Capabilities'):
        print(f"  capabilities: {', '.join(response['Capabilities'])}")
    return 0


def cmd_exports(ctx: Context, args) -> int:
    for name, value, exporter in list_exports(ctx):
        print(f"  {name:<32} {value:<40} {exporter}")
    return 0


COMMANDS = {
    'generate': cmd_generate,
    'deploy': cmd_deploy,
    'terminate': cmd_terminate,
    'update': cmd_update,
    'outputs': cmd_outputs,
    'parameters': cmd_parameters,
    'status': cmd_status,
    'ls': cmd_ls,
    'values': cmd_values,
    'set-policy': cmd_set_policy,
    'check': cmd_check,
    'exports': cmd_exports,
}


def main(argv: Optional[list[str]] = None, ctx: Optional[Context] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    if not args.command:
        parser.print_help()
        return 0

    try:
        ctx = ctx or build_context(args)
        return COMMANDS[args.command](ctx, args)
    except FATAL_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())
