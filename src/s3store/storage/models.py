"""s3store Object Storage data models.

Provides typed dataclasses for the results of contract operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ObjectHead:
    """Size and metadata of a stored object, returned by head_object.

    Attributes:
        size: Stored body length in bytes.
        metadata: User metadata with lowercased keys. Never None.
    """

    size: int
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ListResult:
    """A complete listing of a bucket under a prefix.

    Attributes:
        keys: Keys that did not fold into a common prefix, ascending.
        sizes: Body sizes, index-aligned with keys.
        common_prefixes: Deduplicated folded prefixes, ascending. Each ends
            with the delimiter.
    """

    keys: list[str] = field(default_factory=list)
    sizes: list[int] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str] | list[int]]:
        """Convert the listing to a dictionary for JSON serialization."""
        return {
            "keys": list(self.keys),
            "sizes": list(self.sizes),
            "common_prefixes": list(self.common_prefixes),
        }


@dataclass(frozen=True)
class DeleteFailure:
    """A key the backend reported as not deleted in a batch delete.

    Attributes:
        key: The key that was not deleted.
        code: Backend error code (e.g., "AccessDenied").
        message: Backend error message, may be empty.
    """

    key: str
    code: str
    message: str = ""
