import pytest

from config.base import _coerce_bool, _coerce_int, _coerce_optional_float, _parse_int_list
from config.validation import validate_and_exit, validate_environment


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1", True), ("Yes", True), (" on ", True), ("0", False), ("off", False), ("maybe", None), (None, None)],
)
def test_coerce_bool(value, expected):
    assert _coerce_bool(value, default=None) is expected


def test_coerce_int_respects_minimum():
    assert _coerce_int("8", 4, minimum=1) == 8
    assert _coerce_int("0", 4, minimum=1) == 4
    assert _coerce_int("abc", 4) == 4
    assert _coerce_int("  ", 4) == 4


def test_coerce_optional_float_disables_non_positive():
    assert _coerce_optional_float("2.5") == 2.5
    assert _coerce_optional_float("0") is None
    assert _coerce_optional_float("") is None
    assert _coerce_optional_float("soon") is None


def test_parse_int_list_filters_and_dedupes():
    assert _parse_int_list("20, 50,abc,20,1000,5", minimum=5, maximum=500) == [20, 50, 5]
    assert _parse_int_list("") == []


def test_non_production_is_always_valid(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)

    assert validate_environment("development") == (True, [])


def test_production_requires_secret_and_database(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "your-secret-key")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("IMPORTER_WORKER_ENABLED", raising=False)
    monkeypatch.delenv("IMPORTER_ROW_TIMEOUT_SECONDS", raising=False)

    is_valid, errors = validate_environment("production")

    assert not is_valid
    assert any("SECRET_KEY" in error for error in errors)
    assert any("DATABASE_URL" in error for error in errors)


def test_production_worker_needs_broker_and_importer(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/civic")
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "true")
    monkeypatch.setenv("IMPORTER_ENABLED", "false")
    monkeypatch.setenv("IMPORTER_ROW_TIMEOUT_SECONDS", "fast")
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)

    is_valid, errors = validate_environment("production")

    assert not is_valid
    assert len(errors) == 3
    assert "IMPORTER_ROW_TIMEOUT_SECONDS must be numeric (got 'fast')." in errors


def test_validate_and_exit(monkeypatch, capsys):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        validate_and_exit("production")

    assert excinfo.value.code == 1
    assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err
