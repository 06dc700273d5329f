"""matchthread CLI entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from matchthread import __version__
from matchthread.config import get_settings
from matchthread.lifecycle import LedgerError, Stage
from matchthread.scheduler import build_calculator, build_ledger_store, open_runtime, serve
from matchthread.services.football import ApiUsageTracker
from matchthread.storage import EventCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# matchthread configuration
# Operational parameters only. API keys and tokens belong in .env.

tracking:
  team_id: 42
  season: 2025
  # fixture_id: 1208021    # pin a fixture instead of "next for team"
  refresh_hours: 24
  refresh_interval_minutes: 60
  display_timezone: Europe/London

timing:
  pre_event_offset_minutes: 1440
  live_event_offset_minutes: 15
  typical_duration_minutes: 120
  early_grace_seconds: 0

polling:
  interval_seconds: 120
  error_threshold: 5
  pre_start_threshold: 30
  throttle_factor: 5
  max_duration_hours: 4

assembly:
  max_attempts: 3
  backoff_seconds: [10, 20, 30]

ledger:
  backend: file          # file | redis
  file_name: ledger.yaml
  redis_url: redis://localhost:6379/0

publishing:
  dry_run: false
  backend: telegram      # telegram | log

football:
  daily_call_limit: 100
  recent_results: 5
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from matchthread.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory and configuration file."""
    data_dir = Path("data").resolve()

    try:
        (data_dir / "locks").mkdir(parents=True, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Add FOOTBALL_API_KEY, TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID to .env")
        print("2. Set tracking.team_id and tracking.season in data/config.yaml")
        print("3. Run 'python -m matchthread config' to verify configuration")
        print("4. Run 'python -m matchthread run' to start the scheduler\n")
        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== matchthread Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}\n")

        tracking = settings.tracking
        print("Tracking:")
        print(f"  Team: {tracking.team_id} (season {tracking.season})")
        print(f"  Pinned Fixture: {tracking.fixture_id or '-'}")
        print(f"  Refresh: every {tracking.refresh_hours:g}h")
        print(f"  Display Timezone: {tracking.display_timezone}\n")

        timing = settings.timing
        print("Timing:")
        print(f"  Pre-match: kickoff - {timing.pre_offset}")
        print(f"  Match thread: kickoff - {timing.live_offset}")
        print(f"  Post-match polling from: kickoff + {timing.typical_duration}\n")

        polling = settings.polling
        print("Polling:")
        print(f"  Interval: {polling.interval_seconds}s (x{polling.throttle_factor:g} when throttled)")
        print(f"  Throttle after: {polling.error_threshold} errors / {polling.pre_start_threshold} not-started")
        print(f"  Max Duration: {polling.max_duration_hours:g}h\n")

        print("Assembly:")
        print(f"  Attempts: {settings.assembly.max_attempts}")
        print(f"  Backoff: {', '.join(f'{s:g}s' for s in settings.assembly.backoff_seconds)}\n")

        print("Ledger:")
        print(f"  Backend: {settings.ledger.backend}")
        if settings.ledger.backend == "file":
            print(f"  Path: {settings.ledger_path}\n")
        else:
            print(f"  Redis: {settings.ledger.redis_url}\n")

        print("Publishing:")
        print(f"  Backend: {settings.publishing.backend}")
        print(f"  Dry Run: {settings.publishing.dry_run}\n")

        print("API Keys:")
        print(f"  Football API: {'✓ Set' if settings.football_api_key else '✗ Not set'}")
        print(f"  Telegram Bot: {'✓ Set' if settings.telegram_bot_token else '✗ Not set'}")
        print(f"  Telegram Chat: {'✓ Set' if settings.telegram_chat_id else '✗ Not set'}")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display tracked event, stage times and ledger flags."""
    try:
        settings = get_settings()
        cache = EventCache(settings.data_dir / "event.yaml", settings.tracking.refresh_hours)
        cached = cache.load()

        if cached is None:
            print("\n❌ No tracked event yet.")
            print("Run 'python -m matchthread run --once' to fetch one.\n")
            return 1

        event = cached.event
        calculator = build_calculator(settings)
        flags = build_ledger_store(settings).get(event.key)

        print("\n=== matchthread Status ===\n")
        print(f"Event: {event.key} - {event.matchup}")
        print(f"Competition: {event.competition.name} {event.competition.round}".rstrip())
        print(f"Kickoff: {event.start.isoformat()}")
        print(f"Refreshed: {cached.age().total_seconds() / 3600:.1f}h ago\n")

        for stage in Stage:
            target = calculator.target_time(event, stage)
            when = (
                target.isoformat()
                if target
                else f"on finish (polling from {calculator.estimated_end(event).isoformat()})"
            )
            mark = "✓ published" if flags.is_set(stage) else "· pending"
            print(f"  {stage.label:<26} {mark:<13} {when}")
        print()
        return 0

    except LedgerError as e:
        print(f"\n❌ Ledger unavailable: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_preview(args: argparse.Namespace) -> int:
    """Assemble and print all stages without publishing."""

    async def run() -> int:
        settings = get_settings()
        async with open_runtime(settings, dry_run=True, publish=False) as runtime:
            event = await runtime.resolve_event(force_refresh=args.refresh)
            if event is None:
                print("\n❌ No upcoming event found.\n")
                return 1

            for stage in Stage:
                print(f"\n=== {stage.label} ===\n")
                try:
                    content = await runtime.assembler.assemble(event, stage)
                except Exception as e:
                    logger.warning(f"{stage.label} not available: {e}")
                    content = None
                if content is None:
                    content = runtime.assembler.placeholder(event, stage)
                print(content.title)
                print()
                print(content.body)
                if not content.complete or content.degraded:
                    print("\n(incomplete)" if not content.complete else "\n(placeholder)")
            print()
            return 0

    try:
        return asyncio.run(run())
    except Exception as e:
        logger.error(f"Preview failed: {e}", exc_info=True)
        print(f"\n❌ Preview failed: {e}\n")
        return 1


def cmd_force(args: argparse.Namespace) -> int:
    """Publish one stage now, bypassing its timing but not the ledger."""
    _init_logfire()
    stage = Stage(args.stage)

    async def run() -> int:
        settings = get_settings()
        async with open_runtime(settings, dry_run=args.dry_run or None) as runtime:
            event = await runtime.resolve_event(force_refresh=args.refresh)
            if event is None:
                print("\n❌ No upcoming event found.\n")
                return 1

            scheduler = runtime.orchestrator(event).scheduler(stage)
            state = await scheduler.force()
            print(f"\n{stage.label} for event {event.key}: {state.value}")
            if scheduler.last_error:
                print(f"Error: {scheduler.last_error}")
            print()
            return 0 if scheduler.is_done() else 1

    try:
        return asyncio.run(run())
    except Exception as e:
        logger.error(f"Force publish failed: {e}", exc_info=True)
        print(f"\n❌ Force publish failed: {e}\n")
        return 1


def cmd_usage(args: argparse.Namespace) -> int:
    """Display today's provider API usage."""
    try:
        settings = get_settings()
        tracker = ApiUsageTracker(
            settings.data_dir / "api_usage.yaml", settings.football.daily_call_limit
        )
        usage = tracker.today()

        print("\n=== Football API Usage ===\n")
        print(f"Date (UTC): {usage.date}")
        print(f"Calls: {usage.calls}/{tracker.daily_limit} ({tracker.remaining()} remaining)\n")
        for call in usage.details[-args.last:]:
            print(f"  {call.timestamp:%H:%M:%S}  {call.endpoint:<22} {call.purpose}")
        if usage.details:
            print()
        return 0

    except Exception as e:
        logger.error(f"Failed to read usage: {e}")
        print(f"\n❌ Failed to read usage: {e}\n")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Run one tick (cron mode) or the continuous scheduler."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()
        dry_run = args.dry_run or settings.publishing.dry_run

        print("\n=== matchthread ===\n")
        print(f"Version: {__version__}")
        print(f"Mode: {'DRY RUN' if dry_run else 'LIVE'}")
        print(f"Ledger: {settings.ledger.backend}")
        print(f"Data Directory: {settings.data_dir}\n")

        if args.once:
            return asyncio.run(_tick_once(settings, dry_run, args.refresh))

        print("Starting scheduler...\n")
        asyncio.run(serve(settings, dry_run=dry_run, force_refresh=args.refresh))
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


async def _tick_once(settings, dry_run: bool, refresh: bool) -> int:
    async with open_runtime(settings, dry_run=dry_run) as runtime:
        event = await runtime.resolve_event(force_refresh=refresh)
        if event is None:
            print("No upcoming event to track.\n")
            return 0

        report = await runtime.orchestrator(event).tick()
        print(f"{report}\n")
        return 0 if report.ok else 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="matchthread: scheduled pre-match, match and post-match announcements",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"matchthread {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration file",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display tracked event, stage times and ledger flags",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_preview = subparsers.add_parser(
        "preview",
        help="Print all three announcements without publishing",
    )
    parser_preview.add_argument(
        "--refresh",
        action="store_true",
        help="Re-fetch the tracked event first",
    )
    parser_preview.set_defaults(func=cmd_preview)

    parser_run = subparsers.add_parser(
        "run",
        help="Run the scheduler",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--once",
        action="store_true",
        help="Evaluate every stage once then exit (exit 1 if a stage failed)",
    )
    parser_run.add_argument(
        "--refresh",
        action="store_true",
        help="Re-fetch the tracked event first",
    )
    parser_run.add_argument(
        "--dry-run",
        action="store_true",
        help="Log announcements instead of publishing; never write the ledger",
    )
    parser_run.set_defaults(func=cmd_run)

    parser_force = subparsers.add_parser(
        "force",
        help="Publish one stage now, ignoring its scheduled time",
    )
    parser_force.add_argument(
        "--stage",
        required=True,
        choices=[stage.value for stage in Stage],
        help="Stage to publish",
    )
    parser_force.add_argument(
        "--refresh",
        action="store_true",
        help="Re-fetch the tracked event first",
    )
    parser_force.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the announcement instead of publishing",
    )
    parser_force.set_defaults(func=cmd_force)

    parser_usage = subparsers.add_parser(
        "usage",
        help="Display today's football API usage",
    )
    parser_usage.add_argument(
        "--last",
        type=int,
        default=10,
        help="Number of recent calls to list",
    )
    parser_usage.set_defaults(func=cmd_usage)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
