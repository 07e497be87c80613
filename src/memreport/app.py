"""memreport - command line entry point."""

import logging
from datetime import datetime
from pathlib import Path
from typing import TextIO

import click

from memreport.config import ConfigError, ReportConfig, build_config, load_yaml
from memreport.monitor import ReportScheduler
from memreport.report import ReportGenerator
from memreport.sinks import DeliveryError, StreamSink

logger = logging.getLogger(__name__)


def _settings(config_path: Path | None, overrides: dict) -> ReportConfig:
    """Merge the config file with command line overrides."""
    data = load_yaml(config_path) if config_path else {}
    data.update({key: value for key, value in overrides.items() if value is not None})
    return build_config(data)


def run(
    config_path: Path | None = None,
    locale: str | None = None,
    timezone: str | None = None,
    host_label: str | None = None,
    interval: float | None = None,
    count: int | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> int:
    """
    Produce reports as requested and return the process exit code.

    A single report is printed unless an interval or a count is given, in
    which case reports repeat on the configured interval.
    """
    started = datetime.now().astimezone()
    overrides = {
        "locale": locale,
        "timezone": timezone,
        "host_label": host_label,
        "interval_seconds": interval,
        "log_level": log_level,
    }
    try:
        settings = _settings(config_path, overrides)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    generator = ReportGenerator(started, locale=settings.locale, timezone=settings.timezone)
    sink = StreamSink(stream, sender=settings.sender, recipient=settings.recipient)

    if interval is None and count is None:
        try:
            generator.run_once(sink, host_label=settings.host_label)
        except DeliveryError as e:
            logger.error("%s", e)
            return 1
        return 0

    scheduler = ReportScheduler(
        generator,
        sink,
        interval=settings.interval_seconds,
        host_label=settings.host_label,
        max_runs=count,
    )
    scheduler.start()
    try:
        while scheduler.is_running:
            scheduler.join(timeout=0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        scheduler.stop()
    return 1 if scheduler.failures else 0


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="YAML configuration file",
)
@click.option("--locale", help="Locale for number formatting, e.g. nb_NO")
@click.option("--timezone", help="IANA timezone for timestamps (default: host local)")
@click.option("--host-label", help="Host name shown in the report title")
@click.option("--interval", type=float, help="Repeat every INTERVAL seconds")
@click.option("--count", type=click.IntRange(min=1), help="Stop after COUNT reports")
@click.option("--log-level", help="Logging level (DEBUG, INFO, ...)")
def main(config_path, locale, timezone, host_label, interval, count, log_level) -> None:
    """Print a snapshot of this process's memory state."""
    code = run(
        config_path,
        locale=locale,
        timezone=timezone,
        host_label=host_label,
        interval=interval,
        count=count,
        log_level=log_level,
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
