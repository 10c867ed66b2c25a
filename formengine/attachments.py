"""
Attachment Handling

Image and video fields store a list of attachment references. A reference
is either a hosted URL string or an Attachment carrying the file content.

Upload Rules:
=============
- IMAGE: JPEG, PNG, GIF or WebP, at most 5 MB per file, at most 10 files
- VIDEO: MP4, WebM, OGG or QuickTime, at most 50 MB per file, at most 5 files
- A field's max length bound, when declared, replaces the file count limit
- Rejected files are reported and skipped; exceeding the count limit is
  reported but the accepted files are still appended

At submission time every Attachment is encoded to a data URL.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from formengine.field_types import AttachmentKind, coerce_to_list
from formengine.schema import Field, FormSchema
from formengine.walker import walk_fields

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class Attachment:
    """An uploaded file."""
    filename: str
    content_type: str
    data: bytes = b''

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode('ascii')
        return f'data:{self.content_type};base64,{encoded}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filename': self.filename,
            'content_type': self.content_type,
            'data': base64.b64encode(self.data).decode('ascii'),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attachment':
        """
        Build an attachment from its JSON form.

        Raises:
            ValueError: If the content is not valid base64
        """
        try:
            content = base64.b64decode(data.get('data') or '', validate=True)
        except binascii.Error as e:
            raise ValueError(f'Attachment {data.get("filename")!r} is not valid base64') from e
        return cls(
            filename=str(data.get('filename') or ''),
            content_type=str(data.get('content_type') or ''),
            data=content,
        )


@dataclass
class UploadOutcome:
    """Result of adding uploads to an attachment field."""
    value: List[Any] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


def _attachment_kind(field_def: Field) -> AttachmentKind:
    kind = field_def.kind
    if not isinstance(kind, AttachmentKind):
        raise ValueError(f'Field {field_def.name!r} does not take attachments')
    return kind


def max_files_for(field_def: Field) -> int:
    """File count limit for an attachment field."""
    kind = _attachment_kind(field_def)
    return field_def.max_length if field_def.max_length else kind.default_max_files


def accept_uploads(field_def: Field, existing: Any, uploads: List[Attachment]) -> UploadOutcome:
    """
    Append uploads to an attachment field's current value.

    Args:
        field_def: The IMAGE or VIDEO field
        existing: Current stored value (coerced to a list)
        uploads: Newly uploaded files

    Returns:
        UploadOutcome with the new value and messages for rejected files
    """
    kind = _attachment_kind(field_def)
    current = coerce_to_list(existing)
    max_files = max_files_for(field_def)
    outcome = UploadOutcome()
    accepted = []

    for upload in uploads:
        if upload.content_type not in kind.accepted_types:
            outcome.rejected.append(
                f'{upload.filename}: Invalid file type for {kind.noun} upload.'
            )
            continue
        if upload.size > kind.max_size_mb * BYTES_PER_MB:
            outcome.rejected.append(
                f'{upload.filename}: File size exceeds {kind.max_size_mb}MB limit.'
            )
            continue
        accepted.append(upload)

    if len(current) + len(accepted) > max_files:
        outcome.rejected.append(f'Maximum {max_files} file(s) allowed.')

    outcome.value = current + accepted
    return outcome


def remove_attachment(existing: Any, index: int) -> List[Any]:
    """Remove the attachment at index; out-of-range indexes change nothing."""
    current = coerce_to_list(existing)
    if 0 <= index < len(current):
        del current[index]
    return current


def encode_attachment(reference: Any) -> Any:
    """Encode one reference for submission; URLs pass through unchanged."""
    if isinstance(reference, Attachment):
        return reference.to_data_url()
    if isinstance(reference, dict) and 'data' in reference:
        return Attachment.from_dict(reference).to_data_url()
    return reference


def encode_attachments(schema: FormSchema, values: Dict[str, Any],
                       visible_sections: Optional[set] = None) -> Dict[str, Any]:
    """
    Encode every attachment field's value to a list of data URLs.

    Returns:
        A new value mapping; non-attachment values are copied as they are
    """
    encoded = dict(values)
    for position in walk_fields(schema, visible_sections=visible_sections):
        if not position.field.kind.is_attachment or position.key not in encoded:
            continue
        encoded[position.key] = [encode_attachment(ref) for ref in coerce_to_list(encoded[position.key])]
    return encoded
