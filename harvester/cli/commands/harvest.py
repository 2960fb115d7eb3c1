"""Harvest CLI commands."""

import json

from harvester.acquisition.models import Book, BookUpdate, HarvestMode, HarvestState
from harvester.acquisition.registry import ParseClient, RegistryError
from harvester.config import EnvironmentSetting, HarvesterOptions, ParseSettings
from harvester.harvest import run_harvest


MODE_CHOICES = [mode.value for mode in HarvestMode]
ENVIRONMENT_CHOICES = [env.value for env in EnvironmentSetting]
STATE_CHOICES = [state.value for state in HarvestState]


def options_from_args(args) -> HarvesterOptions:
    """Build harvester options from parsed arguments."""
    options = HarvesterOptions(
        mode=HarvestMode(args.mode),
        count=args.count,
        loop=args.loop,
        read_only=args.read_only,
        query_where=args.query_where,
        environment=EnvironmentSetting.parse(args.environment),
        parse_db_environment=EnvironmentSetting.parse(args.parse_db_environment),
        verbose=args.verbose,
    )
    if args.renderer:
        options.renderer_command = args.renderer
    if args.identifier:
        options.identifier = args.identifier
    return options


def cmd_harvest(args):
    """Run the harvester."""
    if args.query_where:
        try:
            json.loads(args.query_where)
        except json.JSONDecodeError as e:
            print(f"Invalid --query-where JSON: {e}")
            return 1

    try:
        options = options_from_args(args)
        run_harvest(options)
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    return 0


def cmd_update_state(args):
    """Set a book's harvest state directly (for setting up ad-hoc test states)."""
    environment = EnvironmentSetting.parse(args.parse_db_environment)
    state = HarvestState(args.state)

    try:
        client = ParseClient(ParseSettings.from_env(environment))
        update = BookUpdate().set_state(state)
        client.update_object(Book.CLASS_NAME, args.object_id, update.to_dict())
    except (ValueError, RegistryError) as e:
        print(f"Failed to update {args.object_id}: {e}")
        return 1

    print(f"Environment={environment.value}: updated object \"{args.object_id}\" with harvestState={state.value}")
    return 0


def setup_harvest_commands(subparsers):
    """Setup harvest subcommands."""
    # harvest command
    harvest_parser = subparsers.add_parser("harvest", help="Process books from the registry")
    harvest_parser.add_argument("--mode", default=HarvestMode.DEFAULT.value, choices=MODE_CHOICES, help="Which books to process")
    harvest_parser.add_argument("--count", type=int, default=-1, help="Maximum books to process per iteration (-1 = unlimited)")
    harvest_parser.add_argument("--loop", action="store_true", help="Keep harvesting until interrupted")
    harvest_parser.add_argument("--read-only", action="store_true", help="Inspect books without writing to the registry or rendering")
    harvest_parser.add_argument("--query-where", default="", help="Extra registry filter, as a JSON object")
    harvest_parser.add_argument("--environment", default=EnvironmentSetting.DEV.value, choices=ENVIRONMENT_CHOICES, help="Environment to run against")
    harvest_parser.add_argument("--parse-db-environment", default=EnvironmentSetting.DEFAULT.value, choices=ENVIRONMENT_CHOICES, help="Registry environment, if different from --environment")
    harvest_parser.add_argument("--renderer", default="", help="Renderer command (default: $HARVESTER_RENDERER or book-renderer)")
    harvest_parser.add_argument("--identifier", default="", help="Harvester identifier (default: host name)")
    harvest_parser.set_defaults(func=cmd_harvest)

    # update-state command
    update_parser = subparsers.add_parser("update-state", help="Set the harvest state of one book")
    update_parser.add_argument("object_id", help="Registry object id of the book")
    update_parser.add_argument("state", choices=STATE_CHOICES, help="New harvest state")
    update_parser.add_argument("--parse-db-environment", default=EnvironmentSetting.DEV.value, choices=ENVIRONMENT_CHOICES, help="Registry environment")
    update_parser.set_defaults(func=cmd_update_state)
