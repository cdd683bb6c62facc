from __future__ import annotations

import hashlib
import mimetypes
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError, ValidationIssue, issues_from_pydantic
from .schemas import MEDIA_KINDS, AssetMetadata, MediaAsset, MediaReference

_RESOLVABLE_SCHEMES = {"http", "https", "file", "s3", "gs", "data", "blob"}
_MEDIA_ALIASES = {
    "img": "image",
    "photo": "image",
    "picture": "image",
    "clip": "video",
    "movie": "video",
    "sound": "audio",
    "music": "audio",
    "voice": "audio",
    "text": "document",
    "doc": "document",
    "pdf": "document",
}
_DOCUMENT_MIME_PREFIXES = ("text/", "application/pdf", "application/msword", "application/vnd.openxmlformats")

MediaInput = Union[MediaReference, MediaAsset, Mapping[str, Any]]


def normalize_assets(references: Iterable[MediaInput]) -> List[MediaAsset]:
    """Convert caller media references into canonical `MediaAsset` records.

    Caller-provided ids are kept verbatim. Missing ids are derived from the
    media kind and url so repeated submissions of the same reference get the
    same id. Every problem across the whole list is collected and raised as a
    single `ValidationError`.
    """

    issues: List[ValidationIssue] = []
    assets: List[MediaAsset] = []
    taken: set[str] = set()
    for index, raw in enumerate(references):
        field = f"assets[{index}]"
        ref = _coerce_reference(raw, field, issues)
        if ref is None:
            continue
        url = (ref.url or "").strip()
        if not _is_resolvable(url):
            issues.append(ValidationIssue(f"{field}.url", f"unresolvable url {ref.url!r}"))
            continue
        metadata = _coerce_metadata(ref.metadata, f"{field}.metadata", issues)
        if metadata is None:
            continue
        media_type = _resolve_media_type(ref.media_type, metadata.mime_type, url)
        if media_type is None:
            issues.append(
                ValidationIssue(
                    f"{field}.mediaType",
                    f"unsupported media kind {ref.media_type!r}; expected one of {', '.join(MEDIA_KINDS)}",
                )
            )
            continue
        if ref.id is not None and ref.id.strip():
            asset_id = ref.id.strip()
            if asset_id in taken:
                issues.append(ValidationIssue(f"{field}.id", f"duplicate asset id {asset_id!r}"))
                continue
        else:
            asset_id = _derive_asset_id(media_type, url, taken)
        taken.add(asset_id)
        assets.append(MediaAsset(id=asset_id, url=url, media_type=media_type, metadata=metadata))
    if issues:
        raise ValidationError(issues)
    return assets


def _coerce_reference(raw: MediaInput, field: str, issues: List[ValidationIssue]) -> Optional[MediaReference]:
    if isinstance(raw, MediaReference):
        return raw
    if isinstance(raw, MediaAsset):
        return MediaReference(
            id=raw.id,
            url=raw.url,
            media_type=raw.media_type,
            metadata=raw.metadata.model_dump(exclude_none=True),
        )
    if not isinstance(raw, Mapping):
        issues.append(ValidationIssue(field, f"expected a mapping, got {type(raw).__name__}"))
        return None
    try:
        return MediaReference.model_validate(dict(raw))
    except PydanticValidationError as exc:
        issues.extend(issues_from_pydantic(exc, field))
        return None


def _coerce_metadata(raw: Dict[str, Any], field: str, issues: List[ValidationIssue]) -> Optional[AssetMetadata]:
    try:
        return AssetMetadata.model_validate(raw or {})
    except PydanticValidationError as exc:
        issues.extend(issues_from_pydantic(exc, field))
        return None


def _is_resolvable(url: str) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    if not parsed.scheme:
        return url.startswith("/")
    if parsed.scheme.lower() not in _RESOLVABLE_SCHEMES:
        return False
    if parsed.scheme.lower() in {"http", "https", "s3", "gs"}:
        return bool(parsed.netloc)
    return True


def _resolve_media_type(declared: Optional[str], mime_type: Optional[str], url: str) -> Optional[str]:
    if declared is not None and declared.strip():
        token = declared.strip().lower()
        token = _MEDIA_ALIASES.get(token, token)
        return token if token in MEDIA_KINDS else None
    candidate = mime_type or mimetypes.guess_type(urlparse(url).path)[0]
    if not candidate:
        return None
    candidate = candidate.lower()
    for kind in ("image", "video", "audio"):
        if candidate.startswith(f"{kind}/"):
            return kind
    if candidate.startswith(_DOCUMENT_MIME_PREFIXES):
        return "document"
    return None


def _derive_asset_id(media_type: str, url: str, taken: set[str]) -> str:
    digest = hashlib.sha1(f"{media_type}:{url}".encode("utf-8")).hexdigest()[:12]
    base = f"{media_type}-{digest}"
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


__all__ = ["normalize_assets", "MediaInput"]
