# printer.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

import httpx
from pyipp import IPP
from pyipp.enums import IppOperation, IppTag
from pyipp.exceptions import IPPError
from pyipp.parser import parse as parse_response
from pyipp.tags import ATTRIBUTE_TAG_MAP

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_FORMAT = "application/octet-stream"
REQUESTING_USER = "tgprinter"

# IPP status codes below 0x0100 are the successful-ok family
_IPP_OK_MAX = 0x00FF


class PrintError(RuntimeError):
    pass


class PrinterUnavailable(PrintError):
    pass


class FetchError(PrintError):
    pass


class NotAFileError(ValueError):
    pass


@dataclass
class PrintJob:
    content: bytes
    job_name: str
    submitter: str
    file_type: Optional[str] = None
    job_attributes: Dict[str, Any] = field(default_factory=dict)


class PrinterClient(Protocol):
    async def printer_status(self, attributes: Union[Sequence[str], str]) -> Dict[str, Any]: ...

    async def identify(self) -> bool: ...

    async def print_file(self, job: PrintJob) -> Dict[str, Any]: ...


class Fetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


# -----------------------------
# URL helpers
# -----------------------------
def _path_segments(url: str) -> List[str]:
    try:
        u = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise NotAFileError("Link is not a valid URL") from e
    if u.scheme not in ("http", "https"):
        raise NotAFileError("Link is not an http(s) URL")
    return u.path.split("/")


def ensure_file_url(url: str) -> str:
    """Return the file name of a URL, or raise NotAFileError if it looks like a page."""
    last = _path_segments(url)[-1].strip()
    if "." not in last:
        raise NotAFileError("Link does not point to a file that can be printed")
    return last


def job_name_from_url(url: str) -> str:
    segments = [s.strip() for s in _path_segments(url) if s.strip()]
    return segments[-1] if segments else url


# -----------------------------
# IPP attribute tags
# -----------------------------
def register_attribute_tags(tags: Dict[str, str]) -> None:
    """
    Teach the pyipp serializer the value tag of job attributes it has no entry
    for. Attributes missing from its map are silently left out of the request.
    """
    for name, tag_name in tags.items():
        ATTRIBUTE_TAG_MAP.setdefault(name, IppTag[tag_name.upper()])


def can_encode(name: str) -> bool:
    return name in ATTRIBUTE_TAG_MAP


# -----------------------------
# Collaborators
# -----------------------------
class FileFetcher:
    def __init__(self, timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> bytes:
        ensure_file_url(url)
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            # never echo the request URL: telegram file links carry the bot token
            raise FetchError(f"Download failed: {type(e).__name__}") from e
        return resp.content


class IppPrinter:
    """
    Thin adapter over pyipp. Only the calls the bot needs:
    Get-Printer-Attributes, Identify-Printer and Print-Job.
    """

    def __init__(self, url: str, request_timeout: int = 30, session=None, attribute_tags: Optional[Dict[str, str]] = None):
        self._printer_uri = url
        register_attribute_tags(attribute_tags or {})
        self._ipp = IPP(url, request_timeout=request_timeout, session=session)

    @property
    def printer_uri(self) -> str:
        return self._printer_uri

    async def aclose(self) -> None:
        await self._ipp.close()

    def _operation_attributes(self, user: str = REQUESTING_USER, **extra: Any) -> Dict[str, Any]:
        # order matters: charset, language, printer-uri come first on the wire
        attrs: Dict[str, Any] = {
            "attributes-charset": "utf-8",
            "attributes-natural-language": "en",
            "printer-uri": self._printer_uri,
            "requesting-user-name": user,
        }
        attrs.update(extra)
        return attrs

    async def _execute(self, operation: IppOperation, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            raw = await self._ipp.raw(operation, message)
        except (IPPError, OSError, asyncio.TimeoutError) as e:
            raise PrinterUnavailable(f"IPP {operation.name} failed: {e}") from e

        try:
            parsed = parse_response(raw)
        except Exception as e:
            # pyipp surfaces truncated or garbled replies as struct/index errors
            raise PrinterUnavailable(f"IPP {operation.name} returned an unreadable response: {e}") from e

        code = parsed.get("status-code", 0)
        if code > _IPP_OK_MAX:
            raise PrinterUnavailable(f"IPP {operation.name} rejected with status 0x{code:04x}")
        return parsed

    async def printer_status(self, attributes: Union[Sequence[str], str] = "all") -> Dict[str, Any]:
        requested = [attributes] if isinstance(attributes, str) else list(attributes)
        parsed = await self._execute(
            IppOperation.GET_PRINTER_ATTRIBUTES,
            {"operation-attributes-tag": self._operation_attributes(**{"requested-attributes": requested})},
        )
        printers = parsed.get("printers") or []
        return dict(printers[0]) if printers else {}

    async def identify(self) -> bool:
        await self._execute(
            IppOperation.IDENTIFY_PRINTER,
            {"operation-attributes-tag": self._operation_attributes()},
        )
        return True

    async def print_file(self, job: PrintJob) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "operation-attributes-tag": self._operation_attributes(
                job.submitter,
                **{
                    "job-name": job.job_name,
                    "document-format": job.file_type or DEFAULT_DOCUMENT_FORMAT,
                },
            ),
            "data": job.content,
        }
        attributes = {k: v for k, v in job.job_attributes.items() if can_encode(k)}
        dropped = sorted(set(job.job_attributes) - set(attributes))
        if dropped:
            logger.warning("No IPP value tag for %s, not sent with %s", dropped, job.job_name)
        if attributes:
            message["job-attributes-tag"] = attributes

        parsed = await self._execute(IppOperation.PRINT_JOB, message)
        jobs = parsed.get("jobs") or []
        return dict(jobs[0]) if jobs else {}
