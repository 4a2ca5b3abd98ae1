"""
Web fetcher tool.

Fetches a page with httpx and extracts markdown-ish text plus the page's links, images, audio and
video sources with BeautifulSoup.  When the execution context carries a media describer, fetched
images are described in the context of the article and fetched audio is transcribed.
"""

import asyncio
import base64
import logging
import re
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    ClassVar,
    Iterable,
    List,
    Literal,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)
from urllib.parse import (
    urljoin,
    urlparse,
)

import httpx
from bs4 import (
    BeautifulSoup,
    NavigableString,
    Tag,
)
from pydantic import (
    BaseModel,
    Field,
    field_validator,
)

from praxis.config import settings
from praxis.core.schema import (
    Attachment,
    ToolRisk,
)
from praxis.tools import (
    Tool,
    ToolExecutionContext,
    register_tool,
)

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; PraxisAgent/1.0)"
_CONTEXT_PARENTS = ["article", "section", "div"]
_HEADINGS = {f"h{level}": "#" * level for level in range(1, 7)}


# ---------------------------------------------------------------------------
# Extracted content models
# ---------------------------------------------------------------------------
class LinkInfo(BaseModel):
    url: str
    text: str = ""
    context: str = ""
    title: str = ""


class ImageInfo(BaseModel):
    url: str
    alt: str = ""
    context: str = ""
    description: str = ""
    name: str = ""


class AudioInfo(BaseModel):
    url: str
    title: str = ""
    type: str = "audio/unknown"
    duration: str = ""
    context: str = ""
    transcription: str = ""


class VideoInfo(BaseModel):
    url: str
    title: str = ""
    thumbnail: str = ""
    duration: str = ""
    platform: Literal["youtube", "vimeo", "other"] = "other"
    context: str = ""


class ExtractedLinks(BaseModel):
    urls: List[LinkInfo] = Field(default_factory=list)
    images: List[ImageInfo] = Field(default_factory=list)
    audio: List[AudioInfo] = Field(default_factory=list)
    videos: List[VideoInfo] = Field(default_factory=list)


class ExtractedContent(BaseModel):
    """Text and media references pulled out of an HTML page."""

    text: str
    links: ExtractedLinks = Field(default_factory=ExtractedLinks)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def resolve_url(url: str, base: str) -> str:
    if not url:
        return ""
    resolved = urljoin(base, url.strip())
    return resolved if urlparse(resolved).scheme in ("http", "https") else ""


def extract_filename(url: str) -> str:
    return urlparse(url).path.rsplit("/", 1)[-1]


def video_platform(url: str) -> Literal["youtube", "vimeo", "other"]:
    if "youtube.com" in url or "youtu.be" in url:
        return "youtube"
    if "vimeo.com" in url:
        return "vimeo"
    return "other"


def element_context(el: Tag, context_length: int | None = None) -> str:
    """Whitespace-collapsed text of the nearest article/section/div ancestor, truncated."""
    limit = context_length or settings.WEB_FETCH_CONTEXT_LENGTH
    parent = el.find_parent(_CONTEXT_PARENTS)
    if parent is None:
        return ""
    context = re.sub(r"\s+", " ", parent.get_text(" ")).strip()
    if len(context) > limit:
        context = context[:limit] + "..."
    return context


T = TypeVar("T", LinkInfo, ImageInfo, AudioInfo, VideoInfo)


def dedupe_by_url(items: Iterable[T]) -> List[T]:
    seen: set[str] = set()
    unique: List[T] = []
    for item in items:
        if item.url not in seen:
            seen.add(item.url)
            unique.append(item)
    return unique


def to_markdown(element: Tag, base_url: str = "") -> str:
    """
    Convert an element tree into lightweight markdown.

    Image and audio sources are written as URLs resolved against *base_url*, so they match the
    extracted media links.
    """
    text = ""
    for node in element.children:
        if isinstance(node, NavigableString):
            stripped = str(node).strip()
            if stripped:
                text += stripped + " "
            continue
        if not isinstance(node, Tag):
            continue
        tag = node.name.lower()
        if tag in ("img", "audio"):
            src = node.get("src") or ""
            text += (resolve_url(src, base_url) if base_url else "") or src
            text += " "
            continue
        if tag == "br":
            text += "\n"
            continue
        content = to_markdown(node, base_url).strip()
        if tag in _HEADINGS:
            text += f"\n{_HEADINGS[tag]} {content}\n\n"
        elif tag == "p":
            text += f"\n{content}\n\n"
        elif tag in ("strong", "b"):
            text += f"**{content}** "
        elif tag in ("em", "i"):
            text += f"*{content}* "
        elif tag in ("ul", "ol"):
            text += f"\n{content}"
        elif tag == "li":
            text += f"- {content}\n"
        elif tag == "blockquote":
            text += f"\n> {content}\n\n"
        else:
            text += content + " "
    return text


def extract_content(html: str, base_url: str) -> ExtractedContent:
    """Parse *html* fetched from *base_url* into an :class:`ExtractedContent`."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()

    body = soup.body or soup
    text = re.sub(r"\n{3,}", "\n\n", to_markdown(body, base_url)).strip()
    if len(text) > settings.WEB_FETCH_MAX_CHARS:
        text = text[: settings.WEB_FETCH_MAX_CHARS] + "..."

    links = ExtractedLinks()
    for el in soup.find_all("a", href=True):
        href = resolve_url(el["href"], base_url)
        if href:
            links.urls.append(
                LinkInfo(
                    url=href,
                    text=el.get_text(strip=True),
                    context=element_context(el),
                    title=el.get("title") or "",
                )
            )

    for el in soup.find_all("img", src=True):
        src = resolve_url(el["src"], base_url)
        if src:
            links.images.append(
                ImageInfo(
                    url=src,
                    alt=el.get("alt") or "",
                    context=element_context(el),
                    description=el.get("title") or "",
                    name=extract_filename(src),
                )
            )

    audio_tags = soup.find_all("audio", src=True) + [
        el for el in soup.find_all("source", src=True) if (el.get("type") or "").startswith("audio")
    ]
    for el in audio_tags:
        src = resolve_url(el["src"], base_url)
        if src:
            links.audio.append(
                AudioInfo(
                    url=src,
                    title=el.get("title") or extract_filename(src),
                    type=el.get("type") or "audio/unknown",
                    duration=el.get("duration") or "",
                    context=element_context(el),
                )
            )

    video_tags = (
        soup.find_all("video", src=True)
        + [
            el
            for el in soup.find_all("source", src=True)
            if (el.get("type") or "").startswith("video")
        ]
        + [
            el
            for el in soup.find_all("iframe", src=True)
            if "youtube" in el["src"] or "vimeo" in el["src"]
        ]
    )
    for el in video_tags:
        src = resolve_url(el["src"], base_url)
        if src:
            links.videos.append(
                VideoInfo(
                    url=src,
                    title=el.get("title") or extract_filename(src),
                    thumbnail=el.get("poster") or "",
                    duration=el.get("duration") or "",
                    platform=video_platform(src),
                    context=element_context(el),
                )
            )

    links.urls = dedupe_by_url(links.urls)
    links.images = dedupe_by_url(links.images)
    links.audio = dedupe_by_url(links.audio)
    links.videos = dedupe_by_url(links.videos)

    logger.debug(
        "Extracted %d chars, %d urls, %d images, %d audio, %d videos from %s",
        len(text),
        len(links.urls),
        len(links.images),
        len(links.audio),
        len(links.videos),
        base_url,
    )
    return ExtractedContent(text=text, links=links)


# ---------------------------------------------------------------------------
# Fetched media
# ---------------------------------------------------------------------------
class MediaDescriber(Protocol):
    """Describes downloaded images against page text and transcribes downloaded audio in place."""

    async def describe_media(
        self, images: Sequence[Attachment], audio: Sequence[Attachment], context: str
    ) -> None: ...


async def _download(
    client: httpx.AsyncClient, url: str, name: str, kind: Literal["image", "audio"]
) -> Attachment | None:
    try:
        response = await client.get(url, headers={"User-Agent": USER_AGENT}, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Skipping %s %s: %s", kind, url, exc)
        return None
    media_type = response.headers.get("content-type", "").split(";")[0].strip() or None
    return Attachment(
        name=name,
        attachment_type=kind,
        data=base64.b64encode(response.content).decode("ascii"),
        media_type=media_type,
    )


async def describe_fetched_media(
    content: ExtractedContent, client: httpx.AsyncClient, describer: MediaDescriber
) -> ExtractedContent:
    """
    Describe the page's images and transcribe its audio, then put the results into the text.

    Images get a context-free preview plus context taken from the page text; each media URL in
    ``content.text`` is replaced by its description or transcript.  Media that cannot be
    downloaded keep their plain link.
    """
    limit = settings.WEB_FETCH_MAX_MEDIA
    images = content.links.images[:limit]
    audio = content.links.audio[:limit]
    downloads = await asyncio.gather(
        *(_download(client, i.url, i.name or extract_filename(i.url), "image") for i in images),
        *(_download(client, a.url, a.title or extract_filename(a.url), "audio") for a in audio),
    )
    image_pairs = [(i, d) for i, d in zip(images, downloads[: len(images)]) if d is not None]
    audio_pairs = [(a, d) for a, d in zip(audio, downloads[len(images) :]) if d is not None]
    if not image_pairs and not audio_pairs:
        return content

    await describer.describe_media(
        [d for _, d in image_pairs], [d for _, d in audio_pairs], content.text
    )

    text = content.text
    for info, attachment in image_pairs:
        if attachment.description:
            info.description = attachment.description
            text = text.replace(info.url, f"[Image: {attachment.name}] {attachment.description}")
    for track, attachment in audio_pairs:
        if attachment.transcript:
            track.transcription = attachment.transcript
            text = text.replace(
                track.url, f"[Audio transcription: {attachment.name}] {attachment.transcript}"
            )
    content.text = text
    return content


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------
class WebFetchParams(BaseModel):
    url: str = Field(..., description="The URL of the web page to fetch")

    @field_validator("url")
    @classmethod
    def _http_only(cls, value: str) -> str:
        if not re.match(r"^https?://.+", value):
            raise ValueError("Invalid URL format. URL must start with http:// or https://")
        return value


@register_tool
class WebFetchTool(Tool):
    """Fetch a web page and extract its text and media links."""

    name: ClassVar[str] = "web_fetch"
    description: ClassVar[str] = (
        "Fetches and extracts text content and media links from web pages; images are described "
        "and audio is transcribed"
    )
    params_model = WebFetchParams
    risk: ClassVar[ToolRisk] = ToolRisk.EXTERNAL
    approval_required: ClassVar[Optional[bool]] = False  # plain GET

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=settings.TOOL_TIMEOUT_SECONDS) as client:
            yield client

    async def run(self, params: WebFetchParams, context: ToolExecutionContext) -> dict:
        logger.info("Fetching %s", params.url)
        async with self._session() as client:
            response = await client.get(
                params.url, headers={"User-Agent": USER_AGENT}, follow_redirects=True
            )
            # HTTPStatusError is classified by the executor (5xx/429 retriable)
            response.raise_for_status()
            content = extract_content(response.text, str(response.url))
            if context.media is not None and (content.links.images or content.links.audio):
                content = await describe_fetched_media(content, client, context.media)
        return content.model_dump()
