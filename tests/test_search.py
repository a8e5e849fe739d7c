import pytest
import respx
from httpx import Response
from raindropctl.api import RaindropAPI
from raindropctl.console import RecordingLogger
from raindropctl.errors import ValidationError

# Mock Data
MOCK_TOKEN = "test-token"
BASE_URL = "https://api.raindrop.io/rest/v1"


def page(start, size):
    return {
        "result": True,
        "items": [
            {"_id": i, "title": f"T{i}", "link": f"http://s{i}.com", "tags": [f"tag{i}", "shared"]}
            for i in range(start, start + size)
        ],
    }


@pytest.fixture
def api():
    return RaindropAPI(MOCK_TOKEN, logger=RecordingLogger())


@pytest.mark.asyncio
async def test_pagination(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.get("/raindrops/0", params={"search": "", "page": "0", "perpage": "50"}).mock(
            return_value=Response(200, json=page(0, 50))
        )
        respx_mock.get("/raindrops/0", params={"search": "", "page": "1", "perpage": "50"}).mock(
            return_value=Response(200, json=page(50, 1))
        )
        results = await api.search(collection_id=0, limit=100)
        assert len(results) == 51
        assert results[-1].id == 50


@pytest.mark.asyncio
async def test_truncates_overshooting_page(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.get("/raindrops/0").mock(return_value=Response(200, json=page(0, 50)))
        results = await api.search(limit=5)
        assert route.call_count == 1
        assert [r.id for r in results] == [0, 1, 2, 3, 4]
        assert route.calls.last.request.url.params["perpage"] == "5"


@pytest.mark.asyncio
async def test_short_page_ends_pagination(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.get("/raindrops/0").mock(return_value=Response(200, json=page(0, 12)))
        results = await api.search(limit=200)
        assert route.call_count == 1
        assert len(results) == 12


@pytest.mark.asyncio
async def test_empty_page_ends_pagination(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.get("/raindrops/0")
        route.side_effect = [Response(200, json=page(0, 50)), Response(200, json={"result": True, "items": []})]
        results = await api.search(limit=500)
        assert route.call_count == 2
        assert len(results) == 50


@pytest.mark.asyncio
async def test_pages_advance_until_limit(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.get("/raindrops/-1")
        route.side_effect = [Response(200, json=page(0, 50)), Response(200, json=page(50, 50))]
        results = await api.search("q", collection_id=-1, limit=60)
        assert len(results) == 60
        assert [call.request.url.params["page"] for call in route.calls] == ["0", "1"]


@pytest.mark.asyncio
async def test_search_no_results(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.get("/raindrops/0").mock(return_value=Response(200, json={"result": True, "items": []}))
        results = await api.search("query-with-no-results")
        assert results == []


@pytest.mark.asyncio
async def test_invalid_limit_rejected_before_request(api):
    async with respx.mock(base_url=BASE_URL, assert_all_called=False) as respx_mock:
        route = respx_mock.get("/raindrops/0")
        with pytest.raises(ValidationError) as excinfo:
            await api.search(limit=0)
        assert not route.called
        assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_search_end_to_end(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.get("/raindrops/0").mock(return_value=Response(200, json=page(0, 10)))
        results = await api.search("python", collection_id=0, limit=10)

        assert route.call_count == 1
        params = route.calls.last.request.url.params
        assert params["search"] == "python"
        assert params["page"] == "0"
        assert len(results) == 10
        assert results[3].tags == ["tag3", "shared"]
