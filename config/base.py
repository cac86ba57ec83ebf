# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer environment value, falling back to ``default``."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def _coerce_optional_float(value, *, minimum=0.0):
    """
    Parse an optional float; blank, invalid, or non-positive values disable the setting.
    """
    if value is None or str(value).strip() == "":
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if number <= minimum:
        return None
    return number


def _parse_int_list(value, *, minimum=1, maximum=100):
    """
    Parse a comma-separated list of integers with optional bounds.
    """

    if not value:
        return []

    parsed: list[int] = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue
        try:
            number = int(item)
        except ValueError:
            continue
        if number < minimum or number > maximum:
            continue
        if number not in parsed:
            parsed.append(number)
    return parsed


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=False)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")
    IMPORTER_METRICS_ENV = os.environ.get("IMPORTER_METRICS_ENV", "sandbox")
    IMPORTER_MAX_UPLOAD_MB = _coerce_int(os.environ.get("IMPORTER_MAX_UPLOAD_MB"), 25, minimum=1)

    # Row processing
    IMPORTER_ROW_TIMEOUT_SECONDS = _coerce_optional_float(os.environ.get("IMPORTER_ROW_TIMEOUT_SECONDS", "30"))
    IMPORTER_VALIDATION_WORKERS = _coerce_int(os.environ.get("IMPORTER_VALIDATION_WORKERS"), 4, minimum=1)
    IMPORTER_TRANSIENT_RETRIES = _coerce_int(os.environ.get("IMPORTER_TRANSIENT_RETRIES"), 1, minimum=0)

    # Fuzzy suggestions (scores are 0..100 rapidfuzz ratios)
    IMPORTER_FUZZY_MIN_SCORE = float(_coerce_int(os.environ.get("IMPORTER_FUZZY_MIN_SCORE"), 60, minimum=0))
    IMPORTER_FUZZY_SUGGESTION_LIMIT = _coerce_int(os.environ.get("IMPORTER_FUZZY_SUGGESTION_LIMIT"), 5, minimum=1)

    _raw_logs_page_sizes = os.environ.get("IMPORTER_LOGS_PAGE_SIZES", "20,50,100")
    _parsed_page_sizes = _parse_int_list(_raw_logs_page_sizes, minimum=5, maximum=500)
    if not _parsed_page_sizes:
        _parsed_page_sizes = [20, 50, 100]
    IMPORTER_LOGS_PAGE_SIZE_DEFAULT = _coerce_int(
        os.environ.get("IMPORTER_LOGS_PAGE_SIZE_DEFAULT"), _parsed_page_sizes[0], minimum=1
    )
    if IMPORTER_LOGS_PAGE_SIZE_DEFAULT not in _parsed_page_sizes:
        _parsed_page_sizes.insert(0, IMPORTER_LOGS_PAGE_SIZE_DEFAULT)
    IMPORTER_LOGS_PAGE_SIZES = tuple(sorted(set(_parsed_page_sizes)))

    IMPORTER_TEMPLATE_DOC_URL = os.environ.get(
        "IMPORTER_TEMPLATE_DOC_URL",
        "https://docs.civic.example/importer/politicians",
    )


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path = os.path.join(instance_path, "civic_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    # Rows run inline so tests share the session and transaction.
    IMPORTER_ROW_TIMEOUT_SECONDS = None
    IMPORTER_VALIDATION_WORKERS = 1


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
