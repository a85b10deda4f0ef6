import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from tallyman.errors import BillingPeriodError, ConfigurationError
from tallyman.models import SCOPES, TimeRange

PROVIDERS = ("aws", "gcp", "azure")

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: "str") -> "bool":
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _env_int(name: "str", default: "int") -> "int":
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


@dataclass
class Config:
    # storage backend: one of PROVIDERS
    provider: "str" = ""
    # bucket, or container for azure
    bucket: "str" = ""
    endpoint: "str" = ""
    account: "str" = ""
    azure_storage_account: "str" = ""

    # billing period, either a month ("2006-01") or an inclusive
    # date range ("2006-01-02/2006-01-31")
    billing_month: "str" = ""
    billing_custom: "str" = ""
    force_incomplete: "bool" = False

    out: "str" = "usage_report.tgz"
    scope: "str" = "mcp"
    concurrency: "int" = 10
    # read objects one at a time through aggregate_windows
    sequential: "bool" = False
    log_level: "str" = "info"
    log_json: "bool" = False
    metrics_textfile: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            provider=os.environ.get("TALLYMAN_PROVIDER", ""),
            bucket=os.environ.get("TALLYMAN_BUCKET", ""),
            endpoint=os.environ.get("TALLYMAN_ENDPOINT", ""),
            account=os.environ.get("TALLYMAN_ACCOUNT", ""),
            azure_storage_account=os.environ.get("TALLYMAN_AZURE_STORAGE_ACCOUNT", ""),
            billing_month=os.environ.get("TALLYMAN_BILLING_MONTH", ""),
            billing_custom=os.environ.get("TALLYMAN_BILLING_CUSTOM", ""),
            force_incomplete=_env_bool("TALLYMAN_FORCE_INCOMPLETE"),
            out=os.environ.get("TALLYMAN_OUT", "usage_report.tgz"),
            concurrency=_env_int("TALLYMAN_CONCURRENCY", 10),
            sequential=_env_bool("TALLYMAN_SEQUENTIAL"),
        )

    def billing_period(self) -> "TimeRange":
        """
        returns the billing period as a UTC time range. A month
        covers [1st of the month, 1st of the next month); a custom
        range is inclusive of both dates.
        """
        if self.billing_month and self.billing_custom:
            raise BillingPeriodError(
                "billing month and custom billing period are mutually exclusive"
            )

        if self.billing_month:
            try:
                month = datetime.strptime(self.billing_month, "%Y-%m")
            except ValueError as exc:
                raise BillingPeriodError(
                    f"invalid billing month {self.billing_month!r}, expected YYYY-MM"
                ) from exc
            start = datetime(month.year, month.month, 1, tzinfo=timezone.utc)
            if month.month == 12:
                end = datetime(month.year + 1, 1, 1, tzinfo=timezone.utc)
            else:
                end = datetime(month.year, month.month + 1, 1, tzinfo=timezone.utc)
            return TimeRange(start=start, end=end)

        if self.billing_custom:
            parts = self.billing_custom.split("/", 1)
            if len(parts) != 2:
                raise BillingPeriodError(
                    f"invalid billing period {self.billing_custom!r}, "
                    "expected YYYY-MM-DD/YYYY-MM-DD"
                )
            try:
                first, last = (date.fromisoformat(p) for p in parts)
            except ValueError as exc:
                raise BillingPeriodError(f"invalid billing period: {exc}") from exc
            if last < first:
                raise BillingPeriodError("billing period must start before it ends")
            return TimeRange(
                start=datetime(first.year, first.month, first.day, tzinfo=timezone.utc),
                end=datetime(last.year, last.month, last.day, tzinfo=timezone.utc)
                + timedelta(days=1),
            )

        raise BillingPeriodError("billing period is not set")

    def validate(self, now: "datetime") -> "None":
        if self.provider not in PROVIDERS:
            raise ConfigurationError(
                f"{self.provider!r} is not supported, expected one of {', '.join(PROVIDERS)}"
            )
        if not self.bucket:
            raise ConfigurationError("bucket must be set")
        if not self.account:
            raise ConfigurationError("account must be set")
        if self.scope not in SCOPES:
            raise ConfigurationError(f"unknown scope {self.scope!r}")
        if self.concurrency < 1:
            raise ConfigurationError("concurrency must be at least 1")

        if self.provider == "azure":
            if not self.azure_storage_account:
                raise ConfigurationError(
                    "azure storage account must be set for provider azure"
                )
            if self.endpoint:
                raise ConfigurationError("endpoint is not supported for provider azure")

        period = self.billing_period()
        if not self.force_incomplete and period.start < now < period.end:
            raise BillingPeriodError(
                "billing period is incomplete, use --billing.force-incomplete to continue"
            )

        if os.path.exists(self.out):
            raise ConfigurationError(f'file "{self.out}" already exists')
