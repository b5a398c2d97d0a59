# tile_overlay/infrastructure/storage/document_codec.py
"""Persisted template document: construction, fragment (de)serialisation and
the two-variant import parser.

Document layout::

    {
      "whoami": "BlueMarble",
      "scriptVersion": "0.81.1",
      "schemaVersion": "1.0.0",
      "templates": {
        "0 $Z": {
          "name": "My Template",
          "coords": "1231, 47, 183, 593",
          "enabled": true,
          "tiles": {"1231,0047,183,593": "data:image/png;base64,iVBOR..."},
          "pixelCount": 1234
        }
      }
    }
"""
import copy
import json
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tile_overlay.domain.errors import DocumentFormatError, IdentityMismatchError
from tile_overlay.infrastructure.cv.image_process import decode_data_url, decode_image, image_to_data_url


class TemplateEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    coords: Optional[Union[str, List[int]]] = None
    enabled: bool = True
    tiles: Dict[str, Any] = Field(default_factory=dict)
    pixelCount: Optional[Any] = None


class TemplateDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    whoami: str = Field(min_length=1)
    scriptVersion: Optional[str] = None
    schemaVersion: Optional[str] = None
    # Entries are validated one by one so a broken entry can't sink the document
    templates: Dict[str, Any]


class LegacyTemplatesDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    templates: Dict[str, Any]


def whoami_for(script_name: str) -> str:
    return re.sub(r"\s+", "", script_name or "")


def create_document(script_name: str, script_version: str, schema_version: str) -> Dict[str, Any]:
    return {
        "whoami": whoami_for(script_name),
        "scriptVersion": script_version,
        "schemaVersion": schema_version,
        "templates": {},
    }


def serialize_fragments(chunked: Dict[str, Image.Image]) -> Dict[str, str]:
    return {key: image_to_data_url(bitmap) for key, bitmap in chunked.items()}


def decode_fragment(payload: str) -> Image.Image:
    return decode_image(decode_data_url(payload))


def parse_document(raw, current_whoami: str, accepted: Iterable[str]) -> Dict[str, Any]:
    """Returns a private copy of ``raw`` that is safe to adopt.

    The strict shape (with ``whoami``) is tried first, then the identity-less
    ``templates`` map, which gets ``current_whoami`` injected. Raises
    :class:`DocumentFormatError` or :class:`IdentityMismatchError`.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise DocumentFormatError(f"Template JSON is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise DocumentFormatError("Template JSON must be an object")

    doc = copy.deepcopy(raw)
    try:
        TemplateDocument.model_validate(doc)
    except ValidationError as strict_error:
        if doc.get("whoami"):
            raise DocumentFormatError(f"Malformed template JSON: {strict_error}") from strict_error
        try:
            LegacyTemplatesDocument.model_validate(doc)
        except ValidationError as e:
            raise DocumentFormatError(f"Unrecognised template JSON: {e}") from e
        doc["whoami"] = current_whoami

    allowed = list(accepted)
    if current_whoami not in allowed:
        allowed.append(current_whoami)
    if doc["whoami"] not in allowed:
        raise IdentityMismatchError(doc["whoami"], allowed)
    return doc


def parse_entry(entry: Dict[str, Any]) -> TemplateEntry:
    return TemplateEntry.model_validate(entry)
