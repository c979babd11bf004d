"""Application startup script and CLI interface."""

import sys
import asyncio
import argparse
from pathlib import Path
from typing import Dict, List

from .config import (
    AppConfig,
    load_config,
    get_development_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import Cancelled, WorkflowEngineError
from .core.logging import get_logger, setup_logging
from .core.templating import canonical_number, to_json_text


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="stepflow - run workflows embedded in markdown documents"
    )

    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--env",
        choices=["development", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--workflows-dir", help="Base directory for notes and sub-workflows")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the API server")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    execute_parser = subparsers.add_parser("execute", help="Execute a workflow file")
    execute_parser.add_argument("file", help="Markdown or YAML workflow file")
    execute_parser.add_argument("--name", help="Workflow block name inside the file")
    execute_parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Initial variable (repeatable)"
    )
    execute_parser.add_argument("--no-history", action="store_true", help="Do not record execution history")

    validate_parser = subparsers.add_parser("validate", help="Parse a workflow file and report problems")
    validate_parser.add_argument("file", help="Markdown or YAML workflow file")
    validate_parser.add_argument("--name", help="Workflow block name inside the file")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {
        "host": args.host,
        "port": args.port,
        "database_url": args.database_url,
        "log_level": args.log_level,
        "log_file": args.log_file,
        "workflows_dir": args.workflows_dir,
    }
    updates = {key: value for key, value in overrides.items() if value}
    if args.reload:
        updates["reload"] = True
    if args.debug:
        updates["debug"] = True

    if updates:
        config = AppConfig(**{**config.model_dump(), **updates})
    return config


def parse_variables(pairs: List[str]) -> Dict[str, object]:
    """Parse ``KEY=VALUE`` arguments; canonical numeric values become numbers."""
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid variable '{pair}', expected KEY=VALUE")
        variables[key.strip()] = canonical_number(value)
    return variables


def run_server(config: AppConfig):
    """Run the API server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")
    uvicorn.run(create_app(config), **config.get_uvicorn_config())


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import configure_database, create_tables, drop_tables

    logger = get_logger(__name__)
    configure_database(config.database_url, echo=config.database_echo)

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables()
        logger.info("Database tables created successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables()
        create_tables()
        logger.info("Database reset completed successfully")


def _read_definition(path: str) -> str:
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Workflow file not found: {path}")
    return file_path.read_text(encoding="utf-8")


def validate_workflow_command(path: str, name=None, config: AppConfig = None) -> int:
    """Parse a workflow file and print a summary. Returns the exit code."""
    from .core.parser import parse

    try:
        workflow = parse(
            _read_definition(path),
            name=name,
            allow_back_edges=config.allow_back_edges if config else False
        )
    except WorkflowEngineError as e:
        print(f"Invalid workflow: {e.message}")
        return 1

    print(f"Workflow: {workflow.name or '<unnamed>'}")
    print(f"  Nodes: {len(workflow.nodes)}")
    print(f"  Edges: {len(workflow.edges)}")
    print(f"  Start node: {workflow.start_node}")
    return 0


async def execute_workflow_command(
    path: str,
    config: AppConfig,
    name=None,
    variables=None,
    record_history: bool = True
) -> int:
    """Execute a workflow file with local collaborators. Returns the exit code."""
    from .core.collaborators import CollaboratorRegistry
    from .core.interpreter import ExecuteOptions, WorkflowInterpreter
    from .core.parser import parse
    from .factory import build_collaborators, build_history_store

    workflow = parse(_read_definition(path), name=name, allow_back_edges=config.allow_back_edges)
    history = build_history_store(config) if record_history and config.record_history else None

    def print_log(entry):
        print(f"[{entry.status.value}] {entry.node_id} ({entry.node_type}): {entry.message}")

    async with build_collaborators(config, CollaboratorRegistry()) as collaborators:
        interpreter = WorkflowInterpreter(collaborators=collaborators, history=history, config=config)
        try:
            result = await interpreter.execute(
                workflow,
                variables,
                on_log=print_log,
                options=ExecuteOptions(
                    workflow_path=path,
                    workflow_name=name or workflow.name,
                    record_history=history is not None
                )
            )
        except Cancelled as e:
            print(f"Cancelled: {e.message}")
            return 1
        except WorkflowEngineError as e:
            print(f"Failed: {e.message}")
            return 1

    print(to_json_text(result.variables))
    return 0


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Workflows Dir: {config.workflows_dir}")
    print(f"  Max Iterations: {config.max_iterations}")
    print(f"  Max Loop Iterations: {config.max_loop_iterations}")
    print(f"  Max Sub-workflow Depth: {config.max_subworkflow_depth}")
    print(f"  Record History: {config.record_history}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)
        setup_logging(
            level=config.log_level,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured
        )

        if args.command == "run" or args.command is None:
            validate_config(config)
            run_server(config)

        elif args.command == "db":
            if args.db_command:
                run_database_command(args.db_command, config)
            else:
                print("Database command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "execute":
            code = asyncio.run(execute_workflow_command(
                args.file,
                config,
                name=args.name,
                variables=parse_variables(args.var),
                record_history=not args.no_history
            ))
            sys.exit(code)

        elif args.command == "validate":
            sys.exit(validate_workflow_command(args.file, args.name, config))

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
        else:
            parser.print_help()

    except (ValueError, OSError, WorkflowEngineError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
