import logging
import sys
import time

import click
import yaml
from prometheus_client import start_http_server

from .api import APIError, RateLimitError
from .components.asyncloop import AsyncLoop
from .components.config_parser import AdminParams, Parameters
from .components.logs import configure_logging, set_verbosity
from .orchestrator import LoadTest
from .report import BANNER, print_report, rate_limit_lines
from .user import SetupError

configure_logging()
logger = logging.getLogger(__name__)


def fill_admin_credentials(admin: AdminParams, now: int):
    if not admin.email:
        admin.email = f"admin{now}@loadtest.local"
    if not admin.password:
        admin.password = f"TestPass{now}!"


def print_configuration(params: Parameters):
    print("\n".join([
        BANNER,
        "SSE LOAD TEST",
        BANNER,
        "",
        "Configuration:",
        f"  Base URL: {params.server.url}",
        f"  Concurrent Users: {params.load.users}",
        f"  Test Duration: {params.load.duration:g}s",
        f"  Rate Limit: {params.load.requests_per_minute:g} requests/min",
        f"  Grace Period: {params.load.grace_period:g}s",
        f"  Admin: {params.admin.email}",
        "",
    ]))


@click.command()
@click.option("--configfile", help="The .yaml configuration file to use")
@click.option("--url", help="Base URL of the server")
@click.option("--users", type=int, help="Number of concurrent users")
@click.option("--duration", type=float, help="Test duration in seconds")
@click.option("--rpm", type=float, help="Requests per minute, shared by all users")
@click.option("--grace", type=float, help="Grace period for pending events, in seconds")
@click.option("--admin-email", help="Admin account email (default: auto-generated)")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.option("--debug", is_flag=True, help="Enable debug logging (API requests/responses)")
def main(
    configfile: str,
    url: str,
    users: int,
    duration: float,
    rpm: float,
    grace: float,
    admin_email: str,
    verbose: bool,
    debug: bool,
):
    config = {}
    if configfile:
        with open(configfile, "r") as file:
            config = yaml.safe_load(file) or {}

    params = Parameters(config)

    params.server.override("url", url)
    params.load.override("users", users)
    params.load.override("duration", duration)
    params.load.override("requests_per_minute", rpm)
    params.load.override("grace_period", grace)
    params.admin.override("email", admin_email)
    if verbose:
        params.logs.override("verbose", True)
    if debug:
        params.logs.override("debug", True)

    if params.load.users <= 0:
        raise click.BadParameter("must be positive", param_hint="--users")
    if params.load.requests_per_minute <= 0:
        raise click.BadParameter("must be positive", param_hint="--rpm")

    params.admin.set_attribute_from_env("password", "SSELOAD_ADMIN_PASSWORD")
    fill_admin_credentials(params.admin, int(time.time()))

    set_verbosity(params.logs.verbose, params.logs.debug)
    logger.info("Load parameters loaded", {"params": str(params.load)})

    # start the prometheus client
    if params.metrics.port:
        try:
            start_http_server(params.metrics.port)
        except OSError as err:
            logger.error(
                "Could not start the prometheus client",
                {"port": params.metrics.port, "error": f"[Errno {err.args[0]}]: {err.args[1]}"},
            )
        else:
            logger.info("Prometheus client started", {"port": params.metrics.port})

    print_configuration(params)

    load_test = LoadTest(params)
    try:
        report = AsyncLoop().run(load_test.run, load_test.interrupt)
    except RateLimitError as err:
        logger.error("Rate limit detected", {"status": err.status, "error": str(err)})
        print("\n".join(rate_limit_lines()))
        sys.exit(1)
    except (SetupError, APIError) as err:
        logger.error("Test failed", {"error": str(err)})
        click.echo(f"Test failed: {err}", err=True)
        sys.exit(1)

    print_report(report)


if __name__ == "__main__":
    main()
