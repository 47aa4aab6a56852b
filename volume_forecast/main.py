import argparse
import json
import sys

from tabulate import tabulate

from volume_forecast.config import config
from volume_forecast.db import db, session_scope
from volume_forecast.logging_setup import logger, get_logger
from volume_forecast.exceptions import ForecastPlanningError

def init_application(connection_string=None):
    """Initialize application components."""
    db.initialize(connection_string)

    log = logger.app_logger
    log.info("Volume Forecast engine initialized")
    log.info(f"Using database: {config.get('DATABASE', 'engine')} at {config.get('DATABASE', 'host')}:{config.get('DATABASE', 'port')}")

    return True

def init_db(args):
    """Create all tables."""
    log = get_logger('app')
    db.create_all_tables()
    log.info("Database tables created")
    return True

def run_forecast(args):
    """Run the forecast for one scenario and print the report.

    Args:
        args: Command-line arguments with scenario_id and include_records
    """
    from volume_forecast.services.forecast_service import ForecastService

    log = get_logger('forecast')
    log.info(f"Starting forecast with parameters: {args}")

    try:
        with session_scope() as session:
            report = ForecastService(session).run_forecast(args.scenario_id, commit=True)
            result = report.to_dict(include_records=args.include_records)
    except ForecastPlanningError as e:
        log.error(str(e))
        print(json.dumps(e.to_dict(), indent=2))
        return False

    print(json.dumps(result, indent=2, default=str))
    for warning in result['metadata']['warnings']:
        log.warning(warning)
    return True

def compare(args):
    """Compare the forecasts of two scenarios."""
    from volume_forecast.services.comparison_service import ComparisonService

    log = get_logger('forecast')

    try:
        with session_scope() as session:
            rows = ComparisonService(session).compare(args.scenario_a, args.scenario_b, args.group_by)
    except ForecastPlanningError as e:
        log.error(str(e))
        print(json.dumps(e.to_dict(), indent=2))
        return False

    if args.format == 'table':
        table_data = []
        for row in rows:
            delta_percent = row['delta_percent']
            table_data.append([
                row['group_label'],
                round(row['volume_a'], 2),
                round(row['volume_b'], 2),
                round(row['delta_volume'], 2),
                'n/a' if delta_percent is None else f"{delta_percent:.1f}%"
            ])

        print(f"\nScenario {args.scenario_a} vs {args.scenario_b} by {args.group_by}:")
        print(tabulate(table_data, headers=['Group', 'Volume A', 'Volume B', 'Delta', 'Delta %']))
        print(f"\nTotal groups: {len(rows)}")
    else:
        print(json.dumps(rows, indent=2, default=str))
    return True

def main(argv=None):
    parser = argparse.ArgumentParser(description='Scenario volume forecast engine')
    parser.add_argument('--db-url', help='Database URL (overrides config/settings.ini)')
    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('init-db', help='Create database tables')

    forecast_parser = subparsers.add_parser('run-forecast', help='Generate the forecast of a scenario')
    forecast_parser.add_argument('--scenario-id', type=int, required=True, help='Scenario id')
    forecast_parser.add_argument('--include-records', action='store_true',
                                 help='Include the monthly output records in the report')

    compare_parser = subparsers.add_parser('compare', help='Compare two scenario forecasts')
    compare_parser.add_argument('--scenario-a', type=int, required=True, help='Reference scenario id')
    compare_parser.add_argument('--scenario-b', type=int, required=True, help='Compared scenario id')
    compare_parser.add_argument('--group-by', default='BRAND',
                                choices=['CHANNEL', 'BRAND', 'CATEGORY_MACRO', 'PRODUCT'])
    compare_parser.add_argument('--format', default='json', choices=['json', 'table'],
                                help='Output format')

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    init_application(args.db_url)

    commands = {
        'init-db': init_db,
        'run-forecast': run_forecast,
        'compare': compare
    }
    return 0 if commands[args.command](args) else 1

if __name__ == '__main__':
    sys.exit(main())
