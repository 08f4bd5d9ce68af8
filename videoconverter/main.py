import os
import signal
import threading
import typer
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from videoconverter.config.loader import load_config
from videoconverter.domain.errors import CatalogError, ConfigError, RemoteStoreError
from videoconverter.infrastructure.logging import setup_logging
from videoconverter.infrastructure.event_bus import EventBus
from videoconverter.infrastructure.housekeeping import HousekeepingService
from videoconverter.infrastructure.catalog import CatalogSource, open_engine
from videoconverter.infrastructure.remote_store import RemoteStore, authenticate, create_session
from videoconverter.infrastructure.ffmpeg import FFmpegAdapter
from videoconverter.pipeline.aggregator import ProgressAggregator
from videoconverter.pipeline.derivative_worker import DerivativeWorker
from videoconverter.pipeline.video_worker import VideoWorker
from videoconverter.pipeline.scheduler import RunScheduler
from videoconverter.ui.report import format_summary, render_summary

app = typer.Typer(help="videoconverter - converts catalog videos into 1080p/720p/480p/360p and preview")

SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")


def _install_signal_handlers(shutdown_event: threading.Event, logger):
    def _handler(signum, _frame):
        logger.error(f"Unplanned shutdown on signal {signum}")
        shutdown_event.set()

    for name in SHUTDOWN_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, _handler)


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


@app.command()
def convert(
    config_path: Path = typer.Option(Path("conf/videoconverter.yaml"), "--config", "-c", help="Path to YAML config"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Override run deadline in hours"),
    remove_original: Optional[bool] = typer.Option(
        None, "--remove-original/--keep-original", help="Delete originals once every format exists"
    ),
    skip_not_full: Optional[bool] = typer.Option(
        None, "--skip-not-full/--retry-partial", help="Skip videos that already have some formats"
    ),
    temp_dir: Optional[Path] = typer.Option(None, "--temp-dir", help="Override temp directory"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides log_dir)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every catalog video that misses a format and upload the results."""
    started = datetime.now(timezone.utc)

    try:
        config = load_config(config_path)
    except (FileNotFoundError, ConfigError) as exc:
        _fail(str(exc))

    # Apply CLI overrides
    if timeout is not None:
        if timeout <= 0:
            _fail("--timeout must be positive")
        config.general.timeout_hours = timeout
    if remove_original is not None: config.general.remove_original = remove_original
    if skip_not_full is not None: config.general.skip_not_full = skip_not_full
    if temp_dir is not None: config.general.temp_dir = str(temp_dir)
    if debug: config.general.debug = True

    cpu_count = os.cpu_count() or 1
    if config.transcode.threads > cpu_count:
        _fail(f"transcode.threads={config.transcode.threads}, current maximum threads are {cpu_count}")

    logger = setup_logging(Path(config.general.log_dir), debug=config.general.debug, log_path=log_path)
    logger.info(
        f"Config: timeout={config.general.timeout_hours}h, threads={config.transcode.threads}, "
        f"remove_original={config.general.remove_original}, skip_not_full={config.general.skip_not_full}"
    )

    housekeeper = HousekeepingService()
    work_root = housekeeper.prepare_temp_dir(Path(config.general.temp_dir))
    shutdown_event = threading.Event()
    engine = None

    try:
        try:
            engine = open_engine(config.database.url, pool_size=config.database.pool_size)
            catalog = CatalogSource(engine, config.database)
            session = create_session()
            auth = authenticate(session, config.cloud)
            candidates = catalog.list_videos()
        except (CatalogError, RemoteStoreError) as exc:
            logger.error(f"Startup failed: {exc}")
            _fail(str(exc))

        logger.info(f"Catalog returned {len(candidates)} videos")

        remote_store = RemoteStore(session, config.cloud, auth.access_token, auth.owner_id)
        transcoder = FFmpegAdapter(config.transcode, shutdown_event=shutdown_event)
        bus = EventBus()
        aggregator = ProgressAggregator(bus)

        derivative_worker = DerivativeWorker(catalog, remote_store, transcoder, bus)
        video_worker = VideoWorker(
            derivative_worker, catalog, remote_store, remove_original=config.general.remove_original
        )
        scheduler = RunScheduler(
            video_worker, remote_store, bus, work_root, storage_root=config.cloud.storage_root
        )

        deadline = started + timedelta(hours=config.general.timeout_hours)
        _install_signal_handlers(shutdown_event, logger)
        aggregator.start()

        runner = threading.Thread(
            target=scheduler.run,
            args=(candidates, deadline, config.general.skip_not_full),
            name="run-scheduler",
            daemon=True,
        )
        runner.start()

        aborted = False
        try:
            while not aggregator.wait(0.5):
                if shutdown_event.is_set():
                    aborted = True
                    break
                if datetime.now(timezone.utc) > deadline:
                    logger.error("Time is over, reporting before all videos finished")
                    break
        except KeyboardInterrupt:
            logger.error("Unplanned shutdown on Ctrl+C")
            aborted = True

        aggregator.stop()
        counters = aggregator.snapshot()
        if not counters.completed:
            # Stop ffmpeg processes still running for unfinished videos
            shutdown_event.set()

        if counters.completed:
            logger.info("Run finished normally")
        if counters.has_failures():
            logger.error(f"Processing errors occurred\n{format_summary(counters)}")
        else:
            logger.info(f"Summary\n{format_summary(counters)}")
        render_summary(counters)
        logger.info(f"Program finished in {datetime.now(timezone.utc) - started}")

        if aborted:
            raise typer.Exit(code=130)
        if counters.has_failures():
            raise typer.Exit(code=1)
    finally:
        if engine is not None:
            engine.dispose()
        housekeeper.remove_temp_dir(Path(config.general.temp_dir))


if __name__ == "__main__":
    app()
