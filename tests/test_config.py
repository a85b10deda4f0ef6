from datetime import datetime, timezone

import pytest

from tallyman.config import Config
from tallyman.errors import BillingPeriodError, ConfigurationError
from tallyman.models import TimeRange

NOW = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)


def _utc(*args: "int") -> "datetime":
    return datetime(*args, tzinfo=timezone.utc)


def _valid(tmp_path: "object", **overrides: "object") -> "Config":
    fields = {
        "provider": "aws",
        "bucket": "usage",
        "account": "acme",
        "billing_month": "2024-05",
        "out": str(tmp_path / "report.tgz"),
    }
    fields.update(overrides)
    return Config(**fields)


class TestConfigFromEnv:
    def test_defaults(self) -> "None":
        config = Config.from_env()
        assert config.provider == ""
        assert config.bucket == ""
        assert config.force_incomplete is False
        assert config.out == "usage_report.tgz"
        assert config.concurrency == 10
        assert config.sequential is False

    def test_reads_env_vars(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("TALLYMAN_PROVIDER", "gcp")
        monkeypatch.setenv("TALLYMAN_BUCKET", "usage")
        monkeypatch.setenv("TALLYMAN_ENDPOINT", "http://localhost:4443")
        monkeypatch.setenv("TALLYMAN_ACCOUNT", "acme")
        monkeypatch.setenv("TALLYMAN_BILLING_MONTH", "2024-05")
        monkeypatch.setenv("TALLYMAN_FORCE_INCOMPLETE", "true")
        monkeypatch.setenv("TALLYMAN_OUT", "out.tgz")
        monkeypatch.setenv("TALLYMAN_CONCURRENCY", "4")
        config = Config.from_env()
        assert config.provider == "gcp"
        assert config.bucket == "usage"
        assert config.endpoint == "http://localhost:4443"
        assert config.account == "acme"
        assert config.billing_month == "2024-05"
        assert config.force_incomplete is True
        assert config.out == "out.tgz"
        assert config.concurrency == 4

    def test_sequential(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("TALLYMAN_SEQUENTIAL", "yes")
        assert Config.from_env().sequential is True

    def test_empty_concurrency_uses_default(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("TALLYMAN_CONCURRENCY", " ")
        assert Config.from_env().concurrency == 10

    def test_invalid_concurrency(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("TALLYMAN_CONCURRENCY", "ten")
        with pytest.raises(
            ConfigurationError, match="TALLYMAN_CONCURRENCY must be an integer"
        ):
            Config.from_env()


class TestBillingPeriod:
    def test_month(self) -> "None":
        assert Config(billing_month="2024-02").billing_period() == TimeRange(
            start=_utc(2024, 2, 1), end=_utc(2024, 3, 1)
        )

    def test_december(self) -> "None":
        assert Config(billing_month="2023-12").billing_period() == TimeRange(
            start=_utc(2023, 12, 1), end=_utc(2024, 1, 1)
        )

    def test_custom_range_is_inclusive(self) -> "None":
        assert Config(billing_custom="2024-01-10/2024-01-20").billing_period() == TimeRange(
            start=_utc(2024, 1, 10), end=_utc(2024, 1, 21)
        )

    def test_custom_single_day(self) -> "None":
        assert Config(billing_custom="2024-01-10/2024-01-10").billing_period() == TimeRange(
            start=_utc(2024, 1, 10), end=_utc(2024, 1, 11)
        )

    @pytest.mark.parametrize(
        "fields",
        [
            {},
            {"billing_month": "2024-13"},
            {"billing_month": "May 2024"},
            {"billing_custom": "2024-01-10"},
            {"billing_custom": "2024-01-10/tomorrow"},
            {"billing_custom": "2024-01-20/2024-01-10"},
            {"billing_month": "2024-01", "billing_custom": "2024-01-10/2024-01-20"},
        ],
    )
    def test_invalid(self, fields: "dict[str, str]") -> "None":
        with pytest.raises(BillingPeriodError):
            Config(**fields).billing_period()


class TestValidate:
    def test_valid(self, tmp_path: "object") -> "None":
        _valid(tmp_path).validate(NOW)

    def test_unknown_provider(self, tmp_path: "object") -> "None":
        with pytest.raises(ConfigurationError, match="not supported"):
            _valid(tmp_path, provider="dropbox").validate(NOW)

    def test_missing_bucket(self, tmp_path: "object") -> "None":
        with pytest.raises(ConfigurationError, match="bucket"):
            _valid(tmp_path, bucket="").validate(NOW)

    def test_missing_account(self, tmp_path: "object") -> "None":
        with pytest.raises(ConfigurationError, match="account"):
            _valid(tmp_path, account="").validate(NOW)

    def test_azure_requires_storage_account(self, tmp_path: "object") -> "None":
        with pytest.raises(ConfigurationError, match="azure storage account"):
            _valid(tmp_path, provider="azure").validate(NOW)

    def test_azure_forbids_endpoint(self, tmp_path: "object") -> "None":
        config = _valid(
            tmp_path,
            provider="azure",
            azure_storage_account="acmestorage",
            endpoint="http://localhost:10000",
        )
        with pytest.raises(ConfigurationError, match="endpoint"):
            config.validate(NOW)

    def test_azure(self, tmp_path: "object") -> "None":
        _valid(tmp_path, provider="azure", azure_storage_account="acmestorage").validate(NOW)

    def test_incomplete_period(self, tmp_path: "object") -> "None":
        with pytest.raises(BillingPeriodError, match="incomplete"):
            _valid(tmp_path, billing_month="2024-06").validate(NOW)

    def test_force_incomplete(self, tmp_path: "object") -> "None":
        _valid(tmp_path, billing_month="2024-06", force_incomplete=True).validate(NOW)

    def test_output_exists(self, tmp_path: "object") -> "None":
        (tmp_path / "report.tgz").write_bytes(b"")
        with pytest.raises(ConfigurationError, match="already exists"):
            _valid(tmp_path).validate(NOW)

    def test_concurrency(self, tmp_path: "object") -> "None":
        with pytest.raises(ConfigurationError, match="concurrency"):
            _valid(tmp_path, concurrency=0).validate(NOW)
