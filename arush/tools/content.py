"""
Site content tools.

Lookups and mutations over localized news and programs, and reads of chat
documents. Missing items, translations and documents are failures; an empty
search is a success with no items; duplicate slugs and duplicate locales are
failures.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import Field

from arush.clients import BackendError, ImageClient
from arush.content import (
    ContentError,
    ContentNotFound,
    ContentStore,
    TranslationFields,
)
from arush.content.models import ContentKind, Locale

from .base import Tool, ToolArgs, ToolContext, ToolErr, ToolOk, ToolResult
from .storage import BlobStorageError, BlobStore

logger = logging.getLogger(__name__)

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class SeoArgs(ToolArgs):
    meta_title: str | None = Field(default=None, alias="metaTitle", description="Optional SEO meta title.")
    meta_description: str | None = Field(
        default=None, alias="metaDescription", description="Optional SEO meta description."
    )
    keywords: str | None = Field(default=None, description="Optional SEO keywords (comma-separated).")


class TranslationArgs(SeoArgs):
    title: str = Field(min_length=1, description="The title in this locale.")
    content: str = Field(min_length=1, description="The full content (Markdown or HTML).")
    excerpt: str = Field(description="A short summary.")

    def fields(self) -> TranslationFields:
        return TranslationFields(
            title=self.title,
            content=self.content,
            excerpt=self.excerpt,
            meta_title=self.meta_title,
            meta_description=self.meta_description,
            keywords=self.keywords,
        )


class ProgramTranslationArgs(SeoArgs):
    title: str = Field(min_length=1, description="The title of the program in this locale.")
    description: str = Field(min_length=1, description="The full description of the program (Markdown or HTML).")
    age_group: str = Field(alias="ageGroup", description="The age group for the program.")
    schedule: str = Field(description="The schedule details for the program.")

    def fields(self) -> TranslationFields:
        return TranslationFields(
            title=self.title,
            content=self.description,
            age_group=self.age_group,
            schedule=self.schedule,
            meta_title=self.meta_title,
            meta_description=self.meta_description,
            keywords=self.keywords,
        )


class ContentTool(Tool):
    kind: ClassVar[ContentKind]

    def __init__(self, store: ContentStore):
        self.store = store

    @property
    def label(self) -> str:
        return self.kind.capitalize()


# ==============================================================================
# LOOKUPS
# ==============================================================================


class GetLatestNews(ContentTool):
    name = "getLatestNews"
    description = "Get the most recent news items published on the website."
    failure_message = "An error occurred while fetching news items"
    kind = "news"

    class Args(ToolArgs):
        limit: int = Field(default=5, ge=1, le=20, description="How many news items to return (max 20).")
        locale: Locale = Field(default="en", description="The locale to read.")

    async def run(self, args: GetLatestNews.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write("fetching_news", f"Fetching the latest {args.limit} news items...")
        items = await self.store.latest("news", args.limit, args.locale)
        for item in items:
            ctx.side_channel.write("news_item", {"slug": item.slug, "title": item.title, "date": item.date})
        ctx.side_channel.write("news_fetch_status", f"Fetched {len(items)} news items.")
        return ToolOk(
            message=f"Successfully fetched {len(items)} news items.",
            payload={"news": [item.model_dump() for item in items]},
        )


class ContentBySlug(ContentTool):
    class Args(ToolArgs):
        slug: str = Field(min_length=1, description="The unique slug identifier of the item.")
        locale: Locale = Field(default="en", description="The locale to read (defaults to 'en').")

    async def run(self, args: ContentBySlug.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write(f"fetching_{self.kind}", f'Looking up {self.kind} "{args.slug}" ({args.locale})...')
        try:
            item = await self.store.get_by_slug(self.kind, args.slug, args.locale)
        except ContentNotFound as e:
            ctx.side_channel.write(f"{self.kind}_fetch_status", str(e))
            return ToolErr(message=str(e), error_details="not_found")

        ctx.side_channel.write(f"{self.kind}_found", {"slug": item.slug, "title": item.title})
        return ToolOk(message=f"{self.label} item '{args.slug}' found.", payload={self.kind: item.model_dump()})


class GetNewsBySlug(ContentBySlug):
    name = "getNewsBySlug"
    description = "Get a single news item by its slug, in the requested locale."
    failure_message = "Failed to fetch the news item"
    kind = "news"


class GetProgramBySlug(ContentBySlug):
    name = "getProgramBySlug"
    description = "Get a single program by its slug, in the requested locale."
    failure_message = "Failed to fetch the program"
    kind = "program"


class SearchContentByTitle(ContentTool):
    result_key: ClassVar[str]

    class Args(ToolArgs):
        title_query: str = Field(
            min_length=3, alias="titleQuery", description="Part of the title to search for (at least 3 characters)."
        )
        locale: Locale | None = Field(default=None, description="Optional locale to restrict the search to.")

    async def run(self, args: SearchContentByTitle.Args, ctx: ToolContext) -> ToolResult:
        ctx.side_channel.write(f"searching_{self.kind}", f'Searching {self.kind} titles for "{args.title_query}"...')
        items = await self.store.search_by_title(self.kind, args.title_query, args.locale, take=10)
        ctx.side_channel.write(f"{self.kind}_search_status", f"Found {len(items)} matching item(s).")
        if not items:
            message = f"No {self.kind} found matching '{args.title_query}'."
        else:
            message = f"Found {len(items)} {self.kind} item(s) matching '{args.title_query}'."
        return ToolOk(message=message, payload={self.result_key: [item.model_dump() for item in items]})


class SearchNewsByTitle(SearchContentByTitle):
    name = "searchNewsByTitle"
    description = "Search news items by (part of) their title. Returns at most 10 matches."
    failure_message = "Failed to search news"
    kind = "news"
    result_key = "foundNews"


class SearchProgramByTitle(SearchContentByTitle):
    name = "searchProgramByTitle"
    description = "Search programs by (part of) their title. Returns at most 10 matches."
    failure_message = "Failed to search programs"
    kind = "program"
    result_key = "foundPrograms"


# ==============================================================================
# MUTATIONS
# ==============================================================================


class CreateContentItem(ContentTool):
    """Creates an item with its first translation, optionally with an AI thumbnail."""

    result_key: ClassVar[str]
    thumbnail_key: ClassVar[str]

    def __init__(self, store: ContentStore, image_client: ImageClient, blob_store: BlobStore):
        super().__init__(store)
        self.image_client = image_client
        self.blob_store = blob_store

    async def _thumbnail(self, slug: str, fields: TranslationFields, ctx: ToolContext) -> str | None:
        ctx.side_channel.write("thumbnail_generation", "Generating thumbnail image...")
        prompt = (
            f"Create a professional {self.kind} thumbnail image that represents: {fields.title}. "
            f"Context: {fields.excerpt or fields.content[:300]}. "
            f"Style: modern, professional {self.kind} website thumbnail, clear composition."
        )
        try:
            image = await self.image_client.generate(prompt)
            url = await self.blob_store.put(
                f"{self.kind}/thumbnails", BlobStore.unique_name(slug, image.extension), image.data
            )
        except (BackendError, BlobStorageError) as e:
            # A missing thumbnail does not block creating the item
            logger.warning("Thumbnail generation failed for %s '%s': %s", self.kind, slug, e)
            ctx.side_channel.write("thumbnail_generation_status", f"Failed to generate thumbnail: {e}")
            return None
        ctx.side_channel.write("thumbnail_generation_status", "Thumbnail generated successfully!")
        return url

    async def run(self, args: Any, ctx: ToolContext) -> ToolResult:
        kind = self.kind
        fields = args.fields()
        thumbnail = await self._thumbnail(args.slug, fields, ctx) if args.generate_thumbnail else None

        ctx.side_channel.write(f"creating_{kind}_item", f"Preparing to create a {kind} item...")
        try:
            item = await self.store.create_item(kind, args.slug, args.locale, fields, image=thumbnail)
        except ContentError as e:
            ctx.side_channel.write(f"{kind}_creation_status", f"Failed: {e}")
            return ToolErr(message=f"Failed to create {kind} item: {e}", error_details=str(e))

        created = {"id": item.id, "slug": item.slug, "title": item.title, "date": item.date, "locale": item.locale}
        if thumbnail:
            created[self.thumbnail_key] = thumbnail
        ctx.side_channel.write(f"{kind}_creation_status", "Success!")
        ctx.side_channel.write(f"{kind}_created", created)
        return ToolOk(message=f"{self.label} item created successfully.", payload={self.result_key: created})


class CreateNews(CreateContentItem):
    name = "createNews"
    description = "Create a new news item on the website, with its first translation."
    failure_message = "An error occurred while creating the news item"
    kind = "news"
    result_key = "newsItem"
    thumbnail_key = "thumbnailPath"

    class Args(TranslationArgs):
        slug: str = Field(
            min_length=1, pattern=SLUG_PATTERN, description="A unique identifier for the news item, used in the URL."
        )
        locale: Locale = Field(default="en", description="The locale of this first translation.")
        generate_thumbnail: bool = Field(
            default=False, alias="generateThumbnail", description="Whether to generate an AI thumbnail."
        )


class CreateProgram(CreateContentItem):
    name = "createProgram"
    description = "Create a new program item on the website, with its first translation."
    failure_message = "An error occurred while trying to create the program item"
    kind = "program"
    result_key = "programItem"
    thumbnail_key = "thumbnailUrl"

    class Args(ProgramTranslationArgs):
        slug: str = Field(
            min_length=1, pattern=SLUG_PATTERN, description="A unique identifier for the program, used in the URL."
        )
        locale: Locale = Field(default="en", description="The locale of this first translation.")
        generate_thumbnail: bool = Field(
            default=False, alias="generateThumbnail", description="Whether to generate an AI thumbnail."
        )


class UpdateContent(ContentTool):
    """Updates the given fields of one translation; omitted fields keep their value."""

    result_key: ClassVar[str]
    # Argument names stored under a different column
    columns: ClassVar[dict[str, str]] = {}

    async def run(self, args: Any, ctx: ToolContext) -> ToolResult:
        kind = self.kind
        changes = args.model_dump(exclude={"slug", "locale"}, exclude_none=True)
        if not changes:
            ctx.side_channel.write(f"{kind}_update_status", "Failed: No fields provided for update.")
            return ToolErr(message="No fields to update were provided.", error_details="empty update")

        ctx.side_channel.write(f"updating_{kind}", f'Updating {kind} "{args.slug}" ({args.locale})...')
        stored = {self.columns.get(field, field): value for field, value in changes.items()}
        try:
            record = await self.store.update_translation(kind, args.slug, args.locale, stored)
        except ContentNotFound as e:
            ctx.side_channel.write(f"{kind}_update_status", f"Failed: {e}")
            return ToolErr(message=f"Failed to update {kind} item: {e}", error_details="not_found")

        updated = {"id": record.id, "slug": args.slug, "locale": record.locale, "updatedFields": sorted(changes)}
        ctx.side_channel.write(f"{kind}_update_status", "Success!")
        ctx.side_channel.write(f"{kind}_updated", updated)
        return ToolOk(
            message=f"{self.label} item '{args.slug}' updated successfully.", payload={self.result_key: updated}
        )


class UpdateNews(UpdateContent):
    name = "updateNews"
    description = "Update fields of one translation of an existing news item. Only provided fields change."
    failure_message = "An error occurred while updating the news item"
    kind = "news"
    result_key = "updatedNews"

    class Args(ToolArgs):
        slug: str = Field(min_length=1, description="The slug of the news item to update.")
        locale: Locale = Field(default="en", description="Which translation to update.")
        title: str | None = Field(default=None, min_length=1)
        content: str | None = Field(default=None, min_length=1)
        excerpt: str | None = None
        meta_title: str | None = Field(default=None, alias="metaTitle")
        meta_description: str | None = Field(default=None, alias="metaDescription")
        keywords: str | None = None


class UpdateProgram(UpdateContent):
    name = "updateProgram"
    description = "Update fields of one translation of an existing program item. Only provided fields change."
    failure_message = "An error occurred while trying to update the program item"
    kind = "program"
    result_key = "updatedProgramTranslation"
    columns = {"description": "content"}

    class Args(ToolArgs):
        slug: str = Field(min_length=1, description="The slug of the program item to update.")
        locale: Locale = Field(default="en", description="Which translation to update.")
        title: str | None = Field(default=None, min_length=1)
        description: str | None = Field(default=None, min_length=1, description="The new full description.")
        age_group: str | None = Field(default=None, alias="ageGroup")
        schedule: str | None = None
        meta_title: str | None = Field(default=None, alias="metaTitle")
        meta_description: str | None = Field(default=None, alias="metaDescription")
        keywords: str | None = None


class CreateContentTranslation(ContentTool):
    result_key: ClassVar[str]

    async def run(self, args: Any, ctx: ToolContext) -> ToolResult:
        kind = self.kind
        ctx.side_channel.write(
            f"creating_{kind}_translation",
            f'Preparing to create a translation for {kind} item with slug "{args.slug}" in {args.locale} language...',
        )
        try:
            record = await self.store.add_translation(kind, args.slug, args.locale, args.fields())
        except ContentError as e:
            ctx.side_channel.write(f"{kind}_translation_status", f"Failed: {e}")
            return ToolErr(message=f"Failed to create {kind} translation: {e}", error_details=str(e))

        created = {"id": record.id, "locale": record.locale, "title": record.title, "slug": args.slug}
        ctx.side_channel.write(f"{kind}_translation_status", "Success!")
        ctx.side_channel.write(f"{kind}_translation_created", created)
        return ToolOk(
            message=f'{self.label} translation for slug "{args.slug}" created successfully in locale "{args.locale}".',
            payload={self.result_key: created},
        )


class CreateNewsTranslation(CreateContentTranslation):
    name = "createNewsTranslation"
    description = "Create a new translation for an existing news item."
    failure_message = "An error occurred while trying to create the news translation"
    kind = "news"
    result_key = "createdNewsTranslation"

    class Args(TranslationArgs):
        slug: str = Field(min_length=1, description="The unique slug identifier of the news item to translate.")
        locale: Locale = Field(description="The locale for the new translation (one of: 'en', 'fa', 'ar').")


class CreateProgramTranslation(CreateContentTranslation):
    name = "createProgramTranslation"
    description = "Create a new translation for an existing program."
    failure_message = "An error occurred while trying to create the program translation"
    kind = "program"
    result_key = "createdProgramTranslation"

    class Args(ProgramTranslationArgs):
        slug: str = Field(min_length=1, description="The unique slug identifier of the program to translate.")
        locale: Locale = Field(description="The locale for the new translation (one of: 'en', 'fa', 'ar').")


# ==============================================================================
# DOCUMENTS
# ==============================================================================


class GetDocument(Tool):
    name = "getDocument"
    description = "Retrieve the content of a document by its ID."
    failure_message = "Failed to retrieve the document"

    class Args(ToolArgs):
        id: str = Field(min_length=1, description="The ID of the document to retrieve")

    def __init__(self, store: ContentStore):
        self.store = store

    async def run(self, args: GetDocument.Args, ctx: ToolContext) -> ToolResult:
        try:
            document = await self.store.get_document(args.id)
        except ContentNotFound:
            return ToolErr(message="Document not found", error_details="not_found")
        # Other users' documents are reported the same way as missing ones
        if document.user_id is not None and document.user_id != ctx.session.user_id:
            return ToolErr(message="Document not found", error_details="not_found")

        return ToolOk(
            message=f"Document '{document.title}' retrieved.",
            payload={"id": document.id, "title": document.title, "kind": document.kind, "content": document.content},
        )
