import json
from typing import Any, Dict

import pytest
from flask import Flask

from civic_app.importer import IMPORTER_EXTENSION_KEY, get_celery_app, init_importer
from civic_app.importer.celery_app import DEFAULT_QUEUE_NAME, resolve_broker_urls


@pytest.fixture(autouse=True)
def app_context():
    """Override the root autouse fixture so CLI commands use each test's own app context."""
    yield


def build_importer_app(**overrides) -> Flask:
    """
    Construct a minimal Flask app with the importer enabled for worker tests.
    """
    instance_path_override = overrides.pop("INSTANCE_PATH", None)
    if instance_path_override:
        app = Flask(__name__, instance_path=instance_path_override)
    else:
        app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=True,
    )
    app.config.update(overrides)
    init_importer(app)
    return app


def test_celery_defaults_to_sqlite_transport(tmp_path):
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir()
    sqlite_path = instance_dir / "custom.sqlite"

    app = build_importer_app(
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
        INSTANCE_PATH=str(instance_dir),
    )

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_always_eager is True


def test_explicit_broker_urls_win(tmp_path):
    app = build_importer_app(
        INSTANCE_PATH=str(tmp_path),
        CELERY_BROKER_URL="redis://localhost:6379/0",
        CELERY_RESULT_BACKEND="redis://localhost:6379/1",
    )

    assert resolve_broker_urls(app) == ("redis://localhost:6379/0", "redis://localhost:6379/1")


def test_celery_config_json_string(tmp_path):
    app = build_importer_app(
        INSTANCE_PATH=str(tmp_path),
        CELERY_CONFIG='{"task_always_eager": true}',
    )

    assert get_celery_app(app).conf.task_always_eager is True


def test_worker_ping_cli(tmp_path):
    app = build_importer_app(
        INSTANCE_PATH=str(tmp_path),
        IMPORTER_WORKER_ENABLED=True,
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
    )

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(monkeypatch, tmp_path):
    app = build_importer_app(
        INSTANCE_PATH=str(tmp_path),
        IMPORTER_WORKER_ENABLED=True,
        CELERY_CONFIG={"task_always_eager": True, "task_eager_propagates": True},
    )
    celery_app = get_celery_app(app)
    assert celery_app is not None

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    runner = app.test_cli_runner()
    result = runner.invoke(
        args=[
            "importer",
            "worker",
            "run",
            "--loglevel",
            "debug",
            "--concurrency",
            "2",
            "--pool",
            "solo",
            "--queues",
            "imports",
        ]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        "imports",
        "--concurrency",
        "2",
        "--pool",
        "solo",
    ]


def test_importer_enabled_registers_blueprint_and_cli(tmp_path):
    app = build_importer_app(INSTANCE_PATH=str(tmp_path))

    assert "importer" in app.blueprints
    assert "importer.importer_healthcheck" in app.view_functions

    response = app.test_client().get("/importer/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "enabled": True, "worker_enabled": False}

    state = app.extensions[IMPORTER_EXTENSION_KEY]
    assert state["enabled"] is True
    assert state["celery_app"] is not None


def test_importer_disabled_registers_stub_cli():
    app = Flask(__name__)
    app.config.update(SECRET_KEY="test-secret", TESTING=True, IMPORTER_ENABLED=False)
    init_importer(app)

    assert "importer" not in app.blueprints
    assert get_celery_app(app) is None

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output
