import pytest
import structlog
import yaml

from defpatch import Diagnostics, PatchInterpreter, SharedVariables
from defpatch.documents import convert


@pytest.fixture
def node():
    """Build a document node from YAML text."""

    def build(text: str):
        return convert(yaml.compose(text, Loader=yaml.SafeLoader), "<test>")

    return build


@pytest.fixture
def store():
    return SharedVariables()


@pytest.fixture
def diagnostics():
    return Diagnostics(on_unhandled=lambda exc: None)


@pytest.fixture
def interpreter(store, diagnostics):
    return PatchInterpreter(store=store, globals_={}, diagnostics=diagnostics)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
