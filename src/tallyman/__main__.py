import asyncio
import os
import signal

import structlog
from prometheus_client import CollectorRegistry

from tallyman.cli import parse_args
from tallyman.config import Config
from tallyman.errors import BackendError, ConfigurationError, UsageError
from tallyman.logging import setup_logging
from tallyman.metrics import PipelineMetrics
from tallyman.models import SCOPES, ReportMeta, Scope, utcnow
from tallyman.pipeline import Pipeline, aggregate_windows
from tallyman.provider import aws, azure, gcp
from tallyman.provider.base import ObjectSource, WindowReaderIterator
from tallyman.report import open_report
from tallyman.timerange import HOUR, format_rfc3339

logger = structlog.get_logger()


def build_source(config: "Config", scope: "Scope") -> "ObjectSource":
    """
    creates the storage source for the configured provider.
    """
    try:
        if config.provider == "aws":
            return aws.S3Source(
                aws.new_client(config.endpoint), config.bucket, config.account, scope
            )

        if config.provider == "gcp":
            return gcp.GCSSource(
                gcp.new_bucket(config.bucket, config.endpoint), config.account, scope
            )

        if config.provider == "azure":
            return azure.AzureBlobSource(
                azure.new_container_client(config.azure_storage_account, config.bucket),
                config.account,
                scope,
            )

    except Exception as exc:
        raise BackendError(
            config.provider, f"error creating storage client: {exc}"
        ) from exc

    raise ConfigurationError(f"{config.provider!r} is not supported")


async def export(
    config: "Config",
    source: "ObjectSource",
    meta: "ReportMeta",
    scope: "Scope",
    metrics: "PipelineMetrics | None" = None,
) -> "int":
    """
    runs the pipeline over the billing period and packages the
    summaries into a report at config.out. Returns the number of
    summary events written.
    """
    loop = asyncio.get_running_loop()

    with open_report(config.out, meta, scope) as writer:
        if config.sequential:
            windows = WindowReaderIterator(source, meta.time_range, HOUR)
            return await asyncio.to_thread(aggregate_windows, windows, writer, scope)

        pipeline = Pipeline(
            source,
            writer,
            scope=scope,
            concurrency=config.concurrency,
            metrics=metrics,
        )
        # for SIGINT and SIGTERM, signal the pipeline
        # to stop at the next event
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, pipeline.stop)
        try:
            return await pipeline.run(meta.time_range, HOUR)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)


def _cleanup(path: "str") -> "None":
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("cleanup_failed", path=path, error=str(exc))


def main(argv: "list[str] | None" = None) -> "None":
    try:
        config = parse_args(argv)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc
    setup_logging(config.log_level, config.log_json)

    now = utcnow()
    try:
        config.validate(now)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc

    scope = SCOPES[config.scope]
    meta = ReportMeta(
        account=config.account,
        time_range=config.billing_period(),
        collected_at=now,
    )
    metrics = PipelineMetrics(registry=CollectorRegistry())

    logger.info(
        "export_start",
        provider=config.provider,
        bucket=config.bucket,
        endpoint=config.endpoint or None,
        account=config.account,
        start=format_rfc3339(meta.time_range.start),
        end=format_rfc3339(meta.time_range.end),
    )

    try:
        source = build_source(config, scope)
        written = asyncio.run(export(config, source, meta, scope, metrics))
    except FileExistsError as exc:
        raise SystemExit(f'file "{config.out}" already exists') from exc
    except (UsageError, OSError) as exc:
        _cleanup(config.out)
        raise SystemExit(str(exc)) from exc
    except KeyboardInterrupt:
        _cleanup(config.out)
        raise
    finally:
        if config.metrics_textfile:
            metrics.write_textfile(config.metrics_textfile)

    logger.info("export_done", out=os.path.abspath(config.out), events=written)


if __name__ == "__main__":
    main()
