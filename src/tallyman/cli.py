import argparse

from tallyman.config import PROVIDERS, Config
from tallyman.models import SCOPES


def parse_args(argv: "list[str] | None" = None) -> "Config":
    """
    parses command line flags on top of the environment: a flag
    wins over its TALLYMAN_* variable.
    """
    env = Config.from_env()
    parser = argparse.ArgumentParser(
        prog="tallyman",
        description="Export a usage report from control plane usage data",
    )

    storage = parser.add_argument_group("storage")
    storage.add_argument(
        "--storage.provider",
        dest="provider",
        default=env.provider,
        choices=PROVIDERS,
        help="Storage provider (env: TALLYMAN_PROVIDER)",
    )
    storage.add_argument(
        "--storage.bucket",
        dest="bucket",
        default=env.bucket,
        help="Storage bucket, or container for azure (env: TALLYMAN_BUCKET)",
    )
    storage.add_argument(
        "--storage.endpoint",
        dest="endpoint",
        default=env.endpoint,
        help="Custom storage endpoint (env: TALLYMAN_ENDPOINT)",
    )
    storage.add_argument(
        "--storage.account",
        dest="account",
        default=env.account,
        help="Account whose usage is being reported (env: TALLYMAN_ACCOUNT)",
    )
    storage.add_argument(
        "--storage.azure-account",
        dest="azure_storage_account",
        default=env.azure_storage_account,
        help="Azure storage account, required for azure "
        "(env: TALLYMAN_AZURE_STORAGE_ACCOUNT)",
    )

    billing = parser.add_argument_group("billing period")
    period = billing.add_mutually_exclusive_group()
    period.add_argument(
        "--billing.month",
        dest="billing_month",
        default=env.billing_month,
        help="Report one calendar month. Format: 2006-01 (env: TALLYMAN_BILLING_MONTH)",
    )
    period.add_argument(
        "--billing.custom",
        dest="billing_custom",
        default=env.billing_custom,
        help="Report a custom, inclusive date range. "
        "Format: 2006-01-02/2006-01-02 (env: TALLYMAN_BILLING_CUSTOM)",
    )
    billing.add_argument(
        "--billing.force-incomplete",
        dest="force_incomplete",
        action="store_true",
        default=env.force_incomplete,
        help="Report a billing period that has not ended yet",
    )

    parser.add_argument(
        "-o",
        "--report.out",
        dest="out",
        default=env.out,
        help=f"Output file (default: {env.out})",
    )
    parser.add_argument(
        "--report.scope",
        dest="scope",
        default="mcp",
        choices=sorted(SCOPES),
        help="Kind of control plane usage is attributed to (default: mcp)",
    )
    parser.add_argument(
        "--pipeline.concurrency",
        dest="concurrency",
        type=int,
        default=env.concurrency,
        help=f"Objects read concurrently (default: {env.concurrency})",
    )
    parser.add_argument(
        "--pipeline.sequential",
        dest="sequential",
        action="store_true",
        default=env.sequential,
        help="Read objects one at a time, listing lazily (env: TALLYMAN_SEQUENTIAL)",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default="",
        help="Write pipeline metrics to this file in Prometheus text format",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.json",
        dest="log_json",
        action="store_true",
        help="Log as JSON lines",
    )

    args = parser.parse_args(argv)
    return Config(**vars(args))
