import pytest
import requests

from filters import FiltersConf, FilterStore


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned bodies per URL; unknown URLs raise ConnectionError."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        page = self.pages.get(url)
        if page is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(page, FakeResponse):
            return page
        return FakeResponse(200, page)


@pytest.fixture()
def session():
    return FakeSession()


@pytest.fixture()
def store(tmp_path, session):
    conf = FiltersConf(filter_dir=str(tmp_path / "filters"), update_interval_hours=1, session=session)
    return FilterStore(conf)
