import pytest

from docfill.app import create_app
from docfill.config import Settings
from docfill.services.context import build_context
from docfill.services.records import records_from_pairs
from docfill.services.renderer import TemplateRenderer


@pytest.fixture
def settings(tmp_path):
    for name in ("doc_templates", "data", "styles", "output"):
        (tmp_path / name).mkdir()
    return Settings(
        template_dir=str(tmp_path / "doc_templates"),
        data_dir=str(tmp_path / "data"),
        style_dir=str(tmp_path / "styles"),
        output_dir=str(tmp_path / "output"),
        pandoc_bin="pandoc-not-installed",
        retry_delay=0.0,
        log_level="WARNING",
    )


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def renderer():
    return TemplateRenderer(locale="es-ES", timezone="Europe/Madrid")


@pytest.fixture
def make_context():
    def _make(*pairs, **kwargs):
        return build_context(records_from_pairs(pairs), **kwargs)
    return _make
