"""S3 REST API XML documents.

Encodes the DeleteObjects request body and decodes the three response
documents the S3 client consumes:

- ListBucketResult (ListObjectsV2 page)
- DeleteResult (DeleteObjects outcome)
- Error (whole-request failure)

Element names are matched on their local name, so documents with or
without the S3 namespace decode the same way.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable

from pydantic import BaseModel, Field, ValidationError

from s3store.storage.errors import ResponseDecodeError

S3_XML_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


class ListedObject(BaseModel):
    """One Contents entry of a listing page."""

    key: str = Field(min_length=1)
    size: int = Field(ge=0)


class ListBucketPage(BaseModel):
    """One decoded ListObjectsV2 response page.

    Attributes:
        is_truncated: True if more pages follow.
        next_continuation_token: Token for the next page (only if truncated).
        contents: Keys and sizes, in server order.
        common_prefixes: Folded prefixes, in server order.
    """

    is_truncated: bool = False
    next_continuation_token: str = ""
    contents: list[ListedObject] = Field(default_factory=list)
    common_prefixes: list[str] = Field(default_factory=list)


class DeleteError(BaseModel):
    """One per-key failure inside a DeleteResult."""

    key: str
    code: str = ""
    message: str = ""


class DeleteResultDocument(BaseModel):
    """Decoded DeleteObjects response."""

    errors: list[DeleteError] = Field(default_factory=list)


class ErrorDocument(BaseModel):
    """Decoded top-level S3 Error response."""

    code: str = ""
    message: str = ""
    request_id: str = ""


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local_name(child.tag) == name]


def _child_text(element: ET.Element, name: str) -> str:
    for child in element:
        if _local_name(child.tag) == name:
            return child.text or ""
    return ""


def _parse_root(raw: bytes | str, document: str) -> ET.Element:
    if not raw or not raw.strip():
        raise ResponseDecodeError(f"Empty {document} document")
    try:
        return ET.fromstring(raw)
    except ET.ParseError as exc:
        raise ResponseDecodeError(f"Failed to parse {document} XML: {exc}") from exc


def _parse_bool(text: str, *, field_name: str) -> bool:
    value = text.strip().lower()
    if value in ("true", "1"):
        return True
    if value in ("false", "0", ""):
        return False
    raise ResponseDecodeError(f"Invalid boolean for {field_name}: {text!r}")


def is_error_document(raw: bytes | str) -> bool:
    """Return True if raw is a well-formed top-level Error document."""
    try:
        root = ET.fromstring(raw)
    except ET.ParseError:
        return False
    return _local_name(root.tag) == "Error"


def parse_list_bucket_result(raw: bytes | str) -> ListBucketPage:
    """Decode a ListObjectsV2 response page.

    Raises:
        ResponseDecodeError: If the document is malformed, is not a
            ListBucketResult, or has invalid fields.
    """
    root = _parse_root(raw, "ListBucketResult")
    if _local_name(root.tag) != "ListBucketResult":
        raise ResponseDecodeError(
            f"Expected ListBucketResult document, got {_local_name(root.tag)}"
        )

    try:
        contents = [
            ListedObject(
                key=_child_text(entry, "Key"),
                size=int(_child_text(entry, "Size") or "0"),
            )
            for entry in _children(root, "Contents")
        ]
        prefixes = [
            _child_text(entry, "Prefix") for entry in _children(root, "CommonPrefixes")
        ]
        page = ListBucketPage(
            is_truncated=_parse_bool(_child_text(root, "IsTruncated"), field_name="IsTruncated"),
            next_continuation_token=_child_text(root, "NextContinuationToken"),
            contents=contents,
            common_prefixes=[prefix for prefix in prefixes if prefix],
        )
    except (ValueError, ValidationError) as exc:
        raise ResponseDecodeError(f"Invalid ListBucketResult document: {exc}") from exc

    if page.is_truncated and not page.next_continuation_token:
        raise ResponseDecodeError("Truncated ListBucketResult without NextContinuationToken")
    return page


def parse_delete_result(raw: bytes | str) -> DeleteResultDocument:
    """Decode a DeleteObjects response.

    Raises:
        ResponseDecodeError: If the document is malformed or not a DeleteResult.
    """
    root = _parse_root(raw, "DeleteResult")
    if _local_name(root.tag) != "DeleteResult":
        raise ResponseDecodeError(f"Expected DeleteResult document, got {_local_name(root.tag)}")

    try:
        errors = [
            DeleteError(
                key=_child_text(entry, "Key"),
                code=_child_text(entry, "Code"),
                message=_child_text(entry, "Message"),
            )
            for entry in _children(root, "Error")
        ]
        return DeleteResultDocument(errors=errors)
    except ValidationError as exc:
        raise ResponseDecodeError(f"Invalid DeleteResult document: {exc}") from exc


def parse_error_document(raw: bytes | str) -> ErrorDocument:
    """Decode a top-level Error response.

    Raises:
        ResponseDecodeError: If the document is malformed or not an Error.
    """
    root = _parse_root(raw, "Error")
    if _local_name(root.tag) != "Error":
        raise ResponseDecodeError(f"Expected Error document, got {_local_name(root.tag)}")
    return ErrorDocument(
        code=_child_text(root, "Code"),
        message=_child_text(root, "Message"),
        request_id=_child_text(root, "RequestId"),
    )


def build_delete_request(keys: Iterable[str], *, quiet: bool = True) -> bytes:
    """Encode a DeleteObjects request body.

    Quiet mode asks the server to report only failures.
    """
    root = ET.Element("Delete", {"xmlns": S3_XML_NAMESPACE})
    ET.SubElement(root, "Quiet").text = "true" if quiet else "false"
    for key in keys:
        obj = ET.SubElement(root, "Object")
        ET.SubElement(obj, "Key").text = key
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
