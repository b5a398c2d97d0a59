# tile_overlay/domain/template_manager.py
"""Root coordinator of the overlay engine.

Owns the live :class:`Template` entities and their JSON mirror, and runs every
mutation through to the storage chain. There is no internal locking: callers
are expected to keep at most one mutating call in flight. Compositing only
reads the entities and is safe to run for several tiles at once.
"""
import asyncio
import copy
import functools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from tile_overlay.config.settings import settings
from tile_overlay.domain.encoding import number_to_encoded
from tile_overlay.domain.errors import (
    DecodeError,
    DocumentFormatError,
    IdentityMismatchError,
    ReconstructionError,
    TemplateNotFoundError,
    TemplateValidationError,
)
from tile_overlay.domain.template import (
    Template,
    format_coords,
    make_template_key,
    normalize_fragment_key,
    parse_coords,
    parse_template_key,
)
from tile_overlay.infrastructure.cv import image_process
from tile_overlay.infrastructure.cv.pixel_count import compute_pixel_count
from tile_overlay.infrastructure.cv.tile_compositor import composite_tile, select_fragments
from tile_overlay.infrastructure.storage import document_codec
from tile_overlay.infrastructure.storage.backends import StorageChain

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


@dataclass
class ImportResult:
    accepted: bool
    imported: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed_fragments: List[str] = field(default_factory=list)
    message: str = ""


class TemplateManager:
    def __init__(
        self,
        storage: StorageChain,
        executor: Optional[ThreadPoolExecutor] = None,
        *,
        name: Optional[str] = None,
        version: Optional[str] = None,
        schema_version: Optional[str] = None,
        tile_size: Optional[int] = None,
        draw_mult: Optional[int] = None,
        user_id: Optional[int] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.storage = storage
        self.executor = executor
        self.name = name or settings.SCRIPT_NAME
        self.version = version or settings.SCRIPT_VERSION
        self.schema_version = schema_version or settings.SCHEMA_VERSION
        self.tile_size = tile_size or settings.TILE_SIZE
        self.draw_mult = draw_mult or settings.DRAW_MULT
        if self.draw_mult % 2 == 0:
            raise ValueError("draw_mult must be odd")
        self.encoding_base = settings.ENCODING_BASE
        self.user_id = settings.USER_ID if user_id is None else user_id
        self.on_status = on_status

        self.templates_array: List[Template] = []
        self.templates_json: Optional[Dict[str, Any]] = None
        self.templates_should_be_drawn = True
        self.last_status = ""
        self._next_sort_id = 0

    # ------------------------------------------------------------------ Helpers

    def _status(self, message: str) -> None:
        logger.info(message.replace("\n", " | "))
        self.last_status = message
        if self.on_status is not None:
            self.on_status(message)

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(fn, *args))

    def _ensure_json(self) -> Dict[str, Any]:
        if self.templates_json is None:
            logger.info("Creating JSON...")
            self.templates_json = document_codec.create_document(self.name, self.version, self.schema_version)
        return self.templates_json

    def _find(self, key: str) -> Optional[Template]:
        parsed = parse_template_key(key)
        if parsed is None:
            return None
        return next((t for t in self.templates_array if t.matches(*parsed)), None)

    def _allocate_sort_id(self, author_id: str) -> int:
        existing = self.templates_json["templates"]
        sort_id = max(len(existing), self._next_sort_id)
        while make_template_key(sort_id, author_id) in existing:
            sort_id += 1
        self._next_sort_id = sort_id + 1
        return sort_id

    async def _store_templates(self) -> None:
        await self.storage.write_document(self.templates_json)

    def validate_coords(self, coords: Sequence) -> List[int]:
        """Returns ``[tileX, tileY, pixelX, pixelY]`` as ints or raises
        :class:`TemplateValidationError` with a displayable reason."""
        if isinstance(coords, (str, bytes)) or not isinstance(coords, (list, tuple)) or len(coords) != 4:
            raise TemplateValidationError(
                "Coordinates must be an array of 4 numbers [tileX, tileY, pixelX, pixelY]"
            )

        values = []
        for coord in coords:
            if isinstance(coord, bool):
                raise TemplateValidationError("All coordinates must be valid numbers")
            try:
                number = float(coord)
            except (TypeError, ValueError):
                raise TemplateValidationError("All coordinates must be valid numbers")
            if not math.isfinite(number):
                raise TemplateValidationError("All coordinates must be valid numbers")
            if number < 0:
                raise TemplateValidationError("All coordinates must be non-negative numbers")
            if not number.is_integer():
                raise TemplateValidationError("All coordinates must be whole numbers")
            values.append(int(number))

        tile_x, tile_y, pixel_x, pixel_y = values
        if tile_x > settings.MAX_TILE_INDEX or tile_y > settings.MAX_TILE_INDEX:
            raise TemplateValidationError(f"Tile coordinates must be between 0-{settings.MAX_TILE_INDEX}")
        if pixel_x >= self.tile_size or pixel_y >= self.tile_size:
            raise TemplateValidationError(f"Pixel coordinates must be between 0-{self.tile_size - 1}")
        return values

    @staticmethod
    def validate_name(name) -> str:
        if not isinstance(name, str) or not name.strip():
            raise TemplateValidationError("Template name cannot be empty")
        name = name.strip()
        if len(name) > settings.MAX_NAME_LENGTH:
            raise TemplateValidationError(
                f"Template name must be {settings.MAX_NAME_LENGTH} characters or less"
            )
        return name

    def _anchor(self, coords: Sequence[int]):
        tile_x, tile_y, pixel_x, pixel_y = coords
        return tile_x * self.tile_size + pixel_x, tile_y * self.tile_size + pixel_y

    # ------------------------------------------------------------------ Identity / switches

    def set_user_id(self, user_id: int) -> str:
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 0:
            raise TemplateValidationError("User id must be a non-negative integer")
        self.user_id = user_id
        return number_to_encoded(user_id, self.encoding_base)

    def set_templates_should_be_drawn(self, value: bool) -> None:
        self.templates_should_be_drawn = bool(value)

    # ------------------------------------------------------------------ Mutations

    async def create_template(self, image_bytes: bytes, name: str, coords: Sequence) -> Template:
        coords = self.validate_coords(coords)
        display_name = self.validate_name(name) if (name or "").strip() else None

        self._status(f"Creating template at {format_coords(coords)}...")
        image = await self._run(image_process.decode_image, image_bytes)
        anchor_x, anchor_y = self._anchor(coords)
        chunk = await self._run(image_process.chunk_image, image, anchor_x, anchor_y, self.tile_size, self.draw_mult)

        # Nothing is claimed until the image has decoded
        templates = self._ensure_json()["templates"]
        author_id = number_to_encoded(self.user_id or 0, self.encoding_base)
        sort_id = self._allocate_sort_id(author_id)
        display_name = display_name or f"Template {sort_id}"

        template = Template(
            display_name=display_name,
            sort_id=sort_id,
            author_id=author_id,
            coords=coords,
            enabled=True,
            chunked=chunk.tiles,
            pixel_count=chunk.total_pixel_count,
        )
        tiles_payload = await self._run(document_codec.serialize_fragments, chunk.tiles)

        templates[template.key] = {
            "name": template.display_name,
            "coords": format_coords(coords),
            "enabled": True,
            "tiles": tiles_payload,
            # Exact count so later imports skip recomputation
            "pixelCount": template.pixel_count,
        }
        self.templates_array.append(template)

        self._status(f"Template created at {format_coords(coords)}! Total pixels: {template.pixel_count:,}")
        await self._store_templates()
        return template

    async def delete_template(self, key: str) -> None:
        templates = self._ensure_json()["templates"]
        templates.pop(key, None)

        parsed = parse_template_key(key)
        if parsed is not None:
            self.templates_array = [t for t in self.templates_array if not t.matches(*parsed)]

        await self._store_templates()

    async def toggle_template(self, key: str, enabled: bool, persist: bool = True) -> None:
        templates = self._ensure_json()["templates"]
        if key in templates:
            templates[key]["enabled"] = bool(enabled)

        template = self._find(key)
        if template is not None:
            template.enabled = bool(enabled)

        if persist:
            await self._store_templates()

    async def set_all_templates_enabled(self, enabled: bool) -> int:
        """Toggles every template, persisting once at the end."""
        keys = [t["key"] for t in self.get_all_templates()]
        for key in keys:
            await self.toggle_template(key, enabled, persist=False)
        await self._store_templates()
        self._status(f"All templates {'enabled' if enabled else 'disabled'}!")
        return len(keys)

    async def update_template_name(self, key: str, new_name: str) -> str:
        new_name = self.validate_name(new_name)
        templates = self._ensure_json()["templates"]
        template = self._find(key)
        if key not in templates and template is None:
            raise TemplateNotFoundError(key)

        if key in templates:
            templates[key]["name"] = new_name
        if template is not None:
            template.display_name = new_name

        await self._store_templates()
        message = f'Template renamed to "{new_name}"'
        self._status(message)
        return message

    async def update_template_coordinates(self, key: str, new_coords: Sequence) -> str:
        coords = self.validate_coords(new_coords)
        templates = self._ensure_json()["templates"]
        entry = templates.get(key)
        template = self._find(key)
        if entry is None and template is None:
            raise TemplateNotFoundError(key)

        if template is not None:
            if template.chunked:
                moved = await self._run(self._reanchor, template, coords)
                template.chunked = moved.tiles
                template.pixel_count = moved.total_pixel_count
                if entry is not None:
                    entry["tiles"] = await self._run(document_codec.serialize_fragments, moved.tiles)
                    entry["pixelCount"] = moved.total_pixel_count
            template.coords = coords
        if entry is not None:
            entry["coords"] = format_coords(coords)

        await self._store_templates()
        message = f"Template coordinates updated to: {format_coords(coords)}"
        self._status(message)
        return message

    def _reanchor(self, template: Template, coords: List[int]) -> image_process.ChunkResult:
        assembled = image_process.assemble_logical_image(template.chunked, self.tile_size, self.draw_mult)
        if assembled is None:
            return image_process.ChunkResult(dict(template.chunked), template.pixel_count)
        image, origin_x, origin_y = assembled

        # Keep the offset between the declared anchor and the first opaque fragment
        offset_x = offset_y = 0
        if template.coords:
            old_x, old_y = self._anchor(template.coords)
            offset_x, offset_y = max(0, origin_x - old_x), max(0, origin_y - old_y)

        new_x, new_y = self._anchor(coords)
        return image_process.chunk_image(image, new_x + offset_x, new_y + offset_y, self.tile_size, self.draw_mult)

    # ------------------------------------------------------------------ Queries

    def get_all_templates(self) -> List[Dict[str, Any]]:
        if not self.templates_json or not self.templates_json.get("templates"):
            return []

        snapshot = []
        for key, entry in self.templates_json["templates"].items():
            live = self._find(key)
            coords = entry.get("coords")
            snapshot.append({
                "key": key,
                "name": entry.get("name"),
                "coords": coords if isinstance(coords, str) else None,
                "enabled": entry.get("enabled", True),
                # Prefer the live instance, then the persisted value
                "pixelCount": (live.pixel_count if live else 0) or entry.get("pixelCount") or 0,
            })
        return snapshot

    def export_json(self) -> Dict[str, Any]:
        if self.templates_json is None:
            return document_codec.create_document(self.name, self.version, self.schema_version)
        return copy.deepcopy(self.templates_json)

    # ------------------------------------------------------------------ Import

    async def load_from_storage(self) -> Optional[ImportResult]:
        document = await self.storage.read_document()
        if document is None:
            logger.info("No stored templates found.")
            return None
        return await self.import_json(document)

    async def import_json(self, document) -> ImportResult:
        """Additive, first-wins merge of ``document`` into the loaded collection."""
        logger.info("Importing JSON...")
        current = document_codec.whoami_for(self.name)
        try:
            doc = document_codec.parse_document(document, current, settings.ACCEPTED_WHOAMI)
        except (IdentityMismatchError, DocumentFormatError) as e:
            logger.warning(f"Template import rejected: {e}")
            self._status(f"Template import rejected: {e}")
            return ImportResult(accepted=False, message=str(e))

        result = ImportResult(accepted=True)
        if self.templates_json is None:
            self.templates_json = doc
            incoming = list(doc["templates"].keys())
        else:
            incoming = []
            for key, entry in doc["templates"].items():
                if key in self.templates_json["templates"]:
                    result.skipped.append(key)
                    continue
                self.templates_json["templates"][key] = entry
                incoming.append(key)

        templates = self.templates_json["templates"]
        for key in incoming:
            template = await self._build_template(key, templates[key], result)
            if template is None:
                del templates[key]
                result.skipped.append(key)
                continue
            self.templates_array.append(template)
            result.imported.append(key)

        result.message = f"Imported {len(result.imported)} template(s), skipped {len(result.skipped)}."
        self._status(result.message)
        if result.imported:
            await self._store_templates()
        return result

    async def _decode_fragment(self, template_key: str, frag_key: str, payload):
        try:
            return await self._run(document_codec.decode_fragment, payload)
        except DecodeError as e:
            logger.warning(f"Template {template_key!r}: dropping fragment {frag_key!r}: {e}")
            return None

    async def _build_template(self, key: str, entry, result: ImportResult) -> Optional[Template]:
        parsed = parse_template_key(key)
        if parsed is None:
            logger.warning(f"Skipping template with malformed key {key!r}")
            return None
        if not isinstance(entry, dict):
            logger.warning(f"Skipping template {key!r}: entry is not an object")
            return None
        try:
            fields = document_codec.parse_entry(entry)
        except ValidationError as e:
            logger.warning(f"Skipping template {key!r}: {e.error_count()} invalid field(s)")
            return None
        sort_id, author_id = parsed

        # Legacy documents may hold unpadded fragment keys
        tiles_payload = {}
        for frag_key, payload in fields.tiles.items():
            normalized = normalize_fragment_key(frag_key)
            if normalized is None:
                logger.warning(f"Template {key!r}: dropping fragment with malformed key {frag_key!r}")
                result.failed_fragments.append(f"{key}/{frag_key}")
                continue
            tiles_payload[normalized] = payload
        entry["tiles"] = tiles_payload

        frag_keys = list(tiles_payload)
        bitmaps = await asyncio.gather(
            *(self._decode_fragment(key, fk, tiles_payload[fk]) for fk in frag_keys)
        )
        chunked = {}
        for frag_key, bitmap in zip(frag_keys, bitmaps):
            if bitmap is None:
                result.failed_fragments.append(f"{key}/{frag_key}")
                continue
            chunked[frag_key] = bitmap

        template = Template(
            display_name=fields.name or f"Template {sort_id}",
            sort_id=sort_id,
            author_id=author_id,
            coords=parse_coords(fields.coords),
            enabled=fields.enabled,
            chunked=chunked,
        )
        if template.coords is not None:
            entry["coords"] = format_coords(template.coords)

        count = fields.pixelCount
        if isinstance(count, (int, float)) and not isinstance(count, bool) and math.isfinite(count) and count >= 0:
            template.pixel_count = int(count)
        else:
            try:
                template.pixel_count = await self._run(compute_pixel_count, chunked, self.draw_mult)
            except ReconstructionError as e:
                logger.warning(f"Failed to compute precise pixel count for {key!r}; falling back to heuristic: {e}")
                template.pixel_count = max(1, len(chunked)) * settings.PIXEL_COUNT_FALLBACK_PER_TILE
            # Written back so later saves carry the improved value
            entry["pixelCount"] = template.pixel_count

        self._next_sort_id = max(self._next_sort_id, sort_id + 1)
        return template

    # ------------------------------------------------------------------ Compositing

    async def draw_template_on_tile(self, tile_bytes: bytes, tile_coords: Sequence[int]) -> bytes:
        """Live tile bytes in, tile bytes with every enabled template fragment drawn on top out."""
        if not self.templates_should_be_drawn:
            return tile_bytes

        tile_x, tile_y = int(tile_coords[0]), int(tile_coords[1])
        draws = select_fragments(list(self.templates_array), tile_x, tile_y)
        output, status = await self._run(composite_tile, tile_bytes, draws, self.tile_size, self.draw_mult)
        self._status(status)
        return output
