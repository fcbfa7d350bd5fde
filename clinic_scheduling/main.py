import sys
import argparse
import time

import uvicorn
from fastapi import Request
from prometheus_client import Counter, Histogram
from alembic import command
from alembic.config import Config
import os
import logging
from prometheus_fastapi_instrumentator import Instrumentator
from .app import create_app
from .app.consistency_checker import check_timelines
from .app.dependencies import (
    DATABASE_URL,
    build_timeline_locks,
    get_db_engine,
    get_redis_client,
    get_session_factory,
)
from .app.locks import RedisTimelineLocks
from .app.models import Base

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

app = create_app()

# Custom Prometheus metrics for specific routes
ROUTE_REQUEST_COUNT = Counter("route_request_count", "Total number of requests per route", ["method", "endpoint"])
ROUTE_REQUEST_LATENCY = Histogram("route_request_latency_seconds", "Request latency in seconds per route", ["method", "endpoint"])


# Middleware to track custom metrics
@app.middleware("http")
async def add_metrics(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = route.path if route is not None else request.url.path
    ROUTE_REQUEST_COUNT.labels(method=request.method, endpoint=endpoint).inc()
    ROUTE_REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)

    return response


# Instrument the app with Prometheus metrics
Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')


def start_server():
    uvicorn.run(app, host=os.getenv('HOST', '0.0.0.0'), port=int(os.getenv('PORT', 8000)))


def create_tables():
    print(f"Using database URL: {DATABASE_URL}")
    Base.metadata.create_all(get_db_engine())
    print("Database tables created successfully.")


def alembic_config():
    config = Config()
    config.set_main_option('sqlalchemy.url', DATABASE_URL)
    config.set_main_option('script_location', MIGRATIONS_DIR)
    return config


def run_migrations(action, revision=None, message=None):
    config = alembic_config()
    if action == "downgrade" and not revision:
        sys.exit("A target revision is required to downgrade the appointment tables.")
    if action == "revision" and not message:
        sys.exit("A message is required to generate a migration revision.")

    logging.info(f"Running migration action '{action}'")
    if action == "upgrade":
        command.upgrade(config, "head")
    elif action == "downgrade":
        command.downgrade(config, revision)
    elif action == "revision":
        command.revision(config, autogenerate=True, message=message)
    elif action == "current":
        command.current(config)


def run_timeline_check():
    report = check_timelines(get_session_factory(), build_timeline_locks())
    if report:
        logging.warning(f"Timeline check found discrepancies for {len(report)} doctor(s)")
        return 1
    return 0


def clear_timeline_locks():
    removed = RedisTimelineLocks(get_redis_client()).clear()
    print(f"Removed {removed} stale timeline lock(s).")


def main():
    parser = argparse.ArgumentParser(description="Clinic Scheduling Application")
    parser.add_argument(
        '--mode',
        type=str,
        choices=['server', 'create-tables', 'migrate', 'check-timelines', 'clear-locks'],
        required=True,
        help="Mode to run the application in. Choices are 'server' to start the FastAPI server, 'create-tables' to create the database tables, 'migrate' to manage database migrations, 'check-timelines' to re-verify that no doctor is double-booked, or 'clear-locks' to drop stale Redis timeline locks."
    )

    parser.add_argument(
        '--action',
        type=str,
        choices=['upgrade', 'downgrade', 'revision', 'current'],
        help="Action to perform with Alembic migrations. Required if mode is 'migrate'."
    )

    parser.add_argument(
        '--revision',
        type=str,
        help="Specify the revision for downgrade or other Alembic commands where needed."
    )

    parser.add_argument(
        '--message',
        type=str,
        help="Message to use with the 'revision' action in Alembic."
    )

    args = parser.parse_args()

    if args.mode == 'server':
        start_server()
    elif args.mode == 'create-tables':
        create_tables()
    elif args.mode == 'migrate':
        if not args.action:
            print("Please specify an action for the 'migrate' mode.")
        else:
            run_migrations(args.action, args.revision, args.message)
    elif args.mode == 'check-timelines':
        sys.exit(run_timeline_check())
    elif args.mode == 'clear-locks':
        clear_timeline_locks()


if __name__ == "__main__":
    main()
