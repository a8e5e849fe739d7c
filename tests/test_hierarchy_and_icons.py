import json
import pytest
import respx
from httpx import Response
from raindropctl.api import RaindropAPI
from raindropctl.console import RecordingLogger
from raindropctl.errors import AuthenticationError, ServerError, ValidationError

# Mock Data
MOCK_TOKEN = "test-token"
BASE_URL = "https://api.raindrop.io/rest/v1"

@pytest.fixture
def api():
    return RaindropAPI(MOCK_TOKEN, logger=RecordingLogger())

@pytest.fixture
def cover_file(tmp_path):
    path = tmp_path / "cover.png"
    path.write_bytes(b"fake-png")
    return path

@pytest.mark.asyncio
async def test_get_root_collections(api):
    mock_data = {"result": True, "items": [{"_id": 1, "title": "Root", "count": 3}]}
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.get("/collections").mock(return_value=Response(200, json=mock_data))
        cols = await api.get_root_collections()
        assert len(cols) == 1
        assert cols[0].id == 1

@pytest.mark.asyncio
async def test_get_child_collections(api):
    mock_data = {"result": True, "items": [{"_id": 2, "title": "Child", "count": 0, "parent": {"$id": 1}}]}
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.get("/collections/childrens").mock(return_value=Response(200, json=mock_data))
        cols = await api.get_child_collections()
        assert len(cols) == 1
        assert cols[0].parent_id == 1

@pytest.mark.asyncio
async def test_search_covers(api):
    mock_data = {
        "result": True,
        "items": [
            {"icons": [{"png": "http://icon1.png"}]},
            {"icons": None},
            {"icons": [{"png": "http://icon2.png"}]}
        ]
    }
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.get("/collections/covers/test").mock(return_value=Response(200, json=mock_data))
        icons = await api.search_covers("test")
        assert icons == ["http://icon1.png", "http://icon2.png"]

@pytest.mark.asyncio
async def test_merge_collections(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        put_route = respx_mock.put("/collections/merge").mock(return_value=Response(200, json={"result": True}))
        success = await api.merge_collections([1, 2], 3)
        assert success is True
        payload = json.loads(put_route.calls.last.request.content)
        assert payload == {"ids": [1, 2], "to": 3}

@pytest.mark.asyncio
async def test_clean_empty_collections(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.put("/collections/clean").mock(return_value=Response(200, json={"result": True, "count": 5}))
        count = await api.clean_empty_collections()
        assert count == 5

@pytest.mark.asyncio
async def test_empty_trash(api):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.delete("/collection/-99").mock(return_value=Response(200, json={"result": True}))
        success = await api.empty_trash()
        assert success is True

@pytest.mark.asyncio
async def test_upload_collection_cover(api, cover_file):
    mock_item = {"result": True, "item": {"_id": 123, "title": "With Cover", "count": 0, "cover": ["http://c.png"]}}
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.put("/collection/123/cover").mock(return_value=Response(200, json=mock_item))
        result = await api.upload_collection_cover(123, str(cover_file))
        assert result.cover == ["http://c.png"]

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert b'name="cover"; filename="cover.png"' in request.content

@pytest.mark.asyncio
async def test_upload_failure_not_retried(api, cover_file):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        route = respx_mock.put("/collection/123/cover").mock(return_value=Response(500))
        with pytest.raises(ServerError) as excinfo:
            await api.upload_collection_cover(123, str(cover_file))
        assert route.call_count == 1
        assert str(excinfo.value) == "Upload failed: 500"

@pytest.mark.asyncio
async def test_upload_unauthorized(api, cover_file):
    async with respx.mock(base_url=BASE_URL) as respx_mock:
        respx_mock.put("/collection/123/cover").mock(return_value=Response(401))
        with pytest.raises(AuthenticationError):
            await api.upload_collection_cover(123, str(cover_file))

@pytest.mark.asyncio
async def test_upload_missing_file(api, tmp_path):
    with pytest.raises(ValidationError):
        await api.upload_collection_cover(123, str(tmp_path / "nope.png"))
