from datetime import timedelta

import pytest

from arush.auth import Session
from arush.chat.side_channel import SideChannel
from arush.content import (
    ContentNotFound,
    ContentStore,
    Document,
    DuplicateSlug,
    DuplicateTranslation,
    TranslationFields,
)
from arush.tools import BlobStore, Tool, ToolContext
from arush.tools.content import (
    CreateNews,
    CreateNewsTranslation,
    CreateProgram,
    CreateProgramTranslation,
    GetDocument,
    GetLatestNews,
    GetNewsBySlug,
    GetProgramBySlug,
    SearchNewsByTitle,
    UpdateNews,
    UpdateProgram,
)
from fakes import FakeImageClient, failing_image_client


def fields(title: str, content: str = "Body", excerpt: str = "Short") -> TranslationFields:
    return TranslationFields(title=title, content=content, excerpt=excerpt)


async def invoke(tool: Tool, args: dict, channel: SideChannel | None = None) -> dict:
    ctx = ToolContext(session=Session(user_id="u"), side_channel=(channel or SideChannel()).bind("call-1"))
    invocation = await tool.invoke(args, ctx)
    return invocation.result.to_dict()


@pytest.fixture
async def store(tmp_path):
    store = ContentStore(str(tmp_path / "content.db"))
    await store.create_item("news", "open-day", "en", fields("Open Day announced"), date="2024-05-01")
    await store.create_item("news", "new-library", "en", fields("New library opens"), date="2024-06-01")
    await store.create_item("program", "summer-camp", "en", fields("Summer camp"), date="2024-04-01")
    return store


@pytest.mark.asyncio
async def test_store_lookups(store):
    latest = await store.latest("news", 5, "en")
    assert [item.slug for item in latest] == ["new-library", "open-day"]

    item = await store.get_by_slug("news", "open-day")
    assert item.title == "Open Day announced"
    assert item.kind == "news"

    with pytest.raises(ContentNotFound):
        await store.get_by_slug("news", "summer-camp")
    with pytest.raises(ContentNotFound):
        await store.get_by_slug("news", "open-day", "fa")


@pytest.mark.asyncio
async def test_store_rejects_duplicates(store):
    with pytest.raises(DuplicateSlug):
        await store.create_item("news", "open-day", "en", fields("Again"))

    await store.add_translation("news", "open-day", "fa", fields("روز باز"))
    with pytest.raises(DuplicateTranslation):
        await store.add_translation("news", "open-day", "fa", fields("دوباره"))

    # Same slug in another kind is allowed
    await store.create_item("program", "open-day", "en", fields("Open day program"))


@pytest.mark.asyncio
async def test_search_escapes_like_wildcards(store):
    await store.create_item("news", "discount", "en", fields("50% off tuition"))
    assert [i.slug for i in await store.search_by_title("news", "50%")] == ["discount"]
    assert await store.search_by_title("news", "%%%") == []


@pytest.mark.asyncio
async def test_get_latest_news_tool_emits_items(store):
    channel = SideChannel()
    result = await invoke(GetLatestNews(store), {"limit": 1}, channel)

    assert result["success"] is True
    assert [n["slug"] for n in result["news"]] == ["new-library"]
    events = channel.drain()
    assert [e["type"] for e in events] == ["fetching_news", "news_item", "news_fetch_status", "finish"]


@pytest.mark.asyncio
async def test_get_by_slug_reports_missing_item(store):
    result = await invoke(GetNewsBySlug(store), {"slug": "nope"})
    assert result["success"] is False
    assert result["errorDetails"] == "not_found"

    result = await invoke(GetProgramBySlug(store), {"slug": "summer-camp"})
    assert result["success"] is True
    assert result["program"]["title"] == "Summer camp"


@pytest.mark.asyncio
async def test_search_with_no_matches_is_success(store):
    result = await invoke(SearchNewsByTitle(store), {"titleQuery": "zzz-nothing"})
    assert result == {"success": True, "message": "No news found matching 'zzz-nothing'.", "foundNews": []}


@pytest.mark.asyncio
async def test_search_query_too_short_is_rejected(store):
    result = await invoke(SearchNewsByTitle(store), {"titleQuery": "ab"})
    assert result["success"] is False
    assert result["message"] == "Invalid arguments for searchNewsByTitle"


@pytest.mark.asyncio
async def test_create_news_with_thumbnail(store, tmp_path):
    image_client = FakeImageClient()
    blob_store = BlobStore(str(tmp_path / "public"), "http://media.test")
    tool = CreateNews(store, image_client, blob_store)

    result = await invoke(
        tool,
        {
            "slug": "science-fair",
            "title": "Science fair",
            "content": "Projects everywhere.",
            "excerpt": "A fair.",
            "generateThumbnail": True,
        },
    )

    assert result["success"] is True
    thumbnail = result["newsItem"]["thumbnailPath"]
    assert thumbnail.startswith("http://media.test/news/thumbnails/science-fair-")
    assert (await store.get_by_slug("news", "science-fair")).image == thumbnail
    assert "Science fair" in image_client.prompts[0]


@pytest.mark.asyncio
async def test_create_news_survives_thumbnail_failure(store, tmp_path):
    tool = CreateNews(store, failing_image_client(), BlobStore(str(tmp_path / "public")))
    result = await invoke(
        tool,
        {"slug": "quiet-news", "title": "Quiet", "content": "c", "excerpt": "e", "generateThumbnail": True},
    )
    assert result["success"] is True
    assert "thumbnailPath" not in result["newsItem"]


@pytest.mark.asyncio
async def test_create_news_duplicate_slug_fails(store, tmp_path):
    tool = CreateNews(store, FakeImageClient(), BlobStore(str(tmp_path / "public")))
    result = await invoke(tool, {"slug": "open-day", "title": "Dup", "content": "c", "excerpt": "e"})
    assert result["success"] is False
    assert "already exists" in result["message"]


@pytest.mark.asyncio
async def test_update_news_changes_only_given_fields(store):
    result = await invoke(UpdateNews(store), {"slug": "open-day", "title": "Open Day moved"})

    assert result["success"] is True
    assert result["updatedNews"]["updatedFields"] == ["title"]
    item = await store.get_by_slug("news", "open-day")
    assert item.title == "Open Day moved"
    assert item.content == "Body"

    result = await invoke(UpdateNews(store), {"slug": "open-day"})
    assert result["success"] is False

    result = await invoke(UpdateNews(store), {"slug": "missing", "title": "x"})
    assert result["errorDetails"] == "not_found"


@pytest.mark.asyncio
async def test_create_translations(store):
    args = {"slug": "open-day", "locale": "ar", "title": "يوم مفتوح", "content": "محتوى", "excerpt": "ملخص"}

    result = await invoke(CreateNewsTranslation(store), args)
    assert result["success"] is True
    assert result["createdNewsTranslation"]["locale"] == "ar"
    assert (await store.get_by_slug("news", "open-day", "ar")).title == "يوم مفتوح"

    result = await invoke(CreateNewsTranslation(store), args)
    assert result["success"] is False

    program_args = {
        "slug": "no-such-program",
        "locale": "ar",
        "title": "مخيم",
        "description": "وصف",
        "ageGroup": "8-12",
        "schedule": "Weekends",
    }
    result = await invoke(CreateProgramTranslation(store), program_args)
    assert result["success"] is False
    assert "not found" in result["message"]


@pytest.mark.asyncio
async def test_program_translation_keeps_age_group_and_schedule(store):
    args = {
        "slug": "summer-camp",
        "locale": "fa",
        "title": "اردوی تابستانی",
        "description": "برنامه کامل",
        "ageGroup": "10-14",
        "schedule": "Mondays 9:00",
    }
    result = await invoke(CreateProgramTranslation(store), args)
    assert result["success"] is True
    assert result["createdProgramTranslation"]["locale"] == "fa"

    item = await store.get_by_slug("program", "summer-camp", "fa")
    assert item.content == "برنامه کامل"
    assert item.age_group == "10-14"
    assert item.schedule == "Mondays 9:00"


@pytest.mark.asyncio
async def test_create_program_with_thumbnail(store, tmp_path):
    image_client = FakeImageClient()
    channel = SideChannel()
    tool = CreateProgram(store, image_client, BlobStore(str(tmp_path / "public"), "http://media.test"))

    result = await invoke(
        tool,
        {
            "slug": "robotics-club",
            "title": "Robotics club",
            "description": "Build robots.",
            "ageGroup": "12-16",
            "schedule": "Thursdays",
            "generateThumbnail": True,
        },
        channel,
    )

    assert result["success"] is True
    created = result["programItem"]
    assert created["slug"] == "robotics-club"
    assert created["thumbnailUrl"].startswith("http://media.test/program/thumbnails/robotics-club-")
    item = await store.get_by_slug("program", "robotics-club")
    assert item.age_group == "12-16"
    assert item.image == created["thumbnailUrl"]
    assert "Robotics club" in image_client.prompts[0]
    types = [e["type"] for e in channel.drain()]
    assert "creating_program_item" in types
    assert "program_created" in types


@pytest.mark.asyncio
async def test_create_program_requires_program_fields(store, tmp_path):
    tool = CreateProgram(store, FakeImageClient(), BlobStore(str(tmp_path / "public")))
    result = await invoke(tool, {"slug": "no-schedule", "title": "T", "description": "D", "ageGroup": "5-7"})
    assert result["success"] is False
    assert result["message"] == "Invalid arguments for createProgram"

    result = await invoke(
        tool, {"slug": "summer-camp", "title": "T", "description": "D", "ageGroup": "5-7", "schedule": "S"}
    )
    assert result["success"] is False
    assert "already exists" in result["message"]


@pytest.mark.asyncio
async def test_update_program_maps_description_to_content(store):
    result = await invoke(
        UpdateProgram(store), {"slug": "summer-camp", "description": "New plan", "ageGroup": "6-9"}
    )

    assert result["success"] is True
    assert result["updatedProgramTranslation"]["updatedFields"] == ["age_group", "description"]
    item = await store.get_by_slug("program", "summer-camp")
    assert item.content == "New plan"
    assert item.age_group == "6-9"
    assert item.title == "Summer camp"

    result = await invoke(UpdateProgram(store), {"slug": "open-day", "title": "x"})
    assert result["errorDetails"] == "not_found"


@pytest.mark.asyncio
async def test_get_document(store):
    first = Document(id="doc-1", title="Draft", content="first", user_id="u")
    await store.save_document(first)
    later = first.created_at + timedelta(seconds=1)
    await store.save_document(first.model_copy(update={"content": "second", "created_at": later}))
    await store.save_document(Document(id="doc-2", title="Private", content="secret", user_id="someone-else"))

    result = await invoke(GetDocument(store), {"id": "doc-1"})
    assert result["success"] is True
    assert result["content"] == "second"
    assert result["kind"] == "text"

    for missing in ("doc-2", "doc-404"):
        result = await invoke(GetDocument(store), {"id": missing})
        assert result == {"success": False, "message": "Document not found", "errorDetails": "not_found"}
