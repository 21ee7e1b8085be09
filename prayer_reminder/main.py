import argparse
import json
import logging
import sys
from prayer_reminder.core.app import ReminderApp
from prayer_reminder.prayer.errors import PrayerReminderError

def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)  # Set initial level to DEBUG
        logging.debug("Basic logging initialized")

def run_command(app: ReminderApp, command: str) -> int:
    """Run a one-shot command against the app. Returns the process exit code."""
    try:
        if command == "refresh":
            state = app.task_manager.run_sync(app.manual_refresh())
            print(f"Refreshed prayer times for {state.schedule_date} ({state.timezone})")
            for name, hhmm in state.times.items():
                print(f"  {name:<8} {hhmm}")
        elif command == "clear":
            app.task_manager.run_sync(app.clear())
            print("All scheduled notifications cancelled.")
        elif command == "status":
            print(json.dumps(app.task_manager.run_sync(app.status()), indent=2))
        return 0
    except PrayerReminderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        app.task_manager.stop()
        app.config.cleanup()

def main(argv=None) -> int:
    # Setup basic logging
    setup_basic_logging()

    parser = argparse.ArgumentParser(description='Prayer time reminders')
    parser.add_argument('--config',
                       help='Path to config file (default: ~/.prayer_reminder/config.yaml)')
    parser.add_argument('command', nargs='?', default='run',
                       choices=['run', 'refresh', 'clear', 'status'],
                       help='run the reminder service (default) or perform a single action')

    args = parser.parse_args(argv)

    app = ReminderApp(config_path=args.config, watch_config=args.command == 'run')
    if args.command == 'run':
        app.run()
        return 0
    return run_command(app, args.command)

if __name__ == "__main__":
    sys.exit(main())
