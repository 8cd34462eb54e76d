import logging

import pytest

from fakes import make_output


@pytest.fixture
def output():
    "A FormattedOutput writing into a StringIO; read it back with output.stream.getvalue()."
    out, stream = make_output()
    out.stream = stream
    return out


@pytest.fixture
def warnings(caplog):
    caplog.set_level(logging.WARNING)
    return caplog
