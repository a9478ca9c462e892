"""
Asset Manifest

Per-theme catalog of processed card images and their review status,
stored at <output_dir>/<theme>/manifest.json.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import Field, ValidationError

from .generate.models import GenerationTask
from .models import CamelModel, ProcessingResult, SizedPaths, utcnow

logger = logging.getLogger(__name__)

AssetStatus = Literal["approved", "pending", "rejected"]

PROCESSED_FILE_PATTERN = re.compile(r"^(.+)-(small|medium|large)(-framed)?\.(\w+)$")


class ManifestNotLoadedError(RuntimeError):
    """Raised when the manifest is modified before load()."""
    pass


class CardAssetEntry(CamelModel):
    definition_id: str
    images: SizedPaths
    framed_images: Optional[SizedPaths] = None
    status: AssetStatus = "pending"
    generated_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    version: int = 1


class ManifestStats(CamelModel):
    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0


class AssetManifest(CamelModel):
    theme: str
    version: str = "1.0.0"
    generated_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    cards: Dict[str, CardAssetEntry] = Field(default_factory=dict)
    stats: ManifestStats = Field(default_factory=ManifestStats)


class AssetManifestStore:
    """Loads, edits and saves one theme's manifest at a time."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.manifest: Optional[AssetManifest] = None

    def manifest_path(self, theme: str) -> Path:
        return self.output_dir / theme / "manifest.json"

    def load(self, theme: str) -> AssetManifest:
        """Load the theme's manifest, or start a new one if missing or corrupt."""
        path = self.manifest_path(theme)

        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                self.manifest = AssetManifest.model_validate(data)
                return self.manifest
            except (OSError, ValueError, ValidationError) as e:
                logger.error(f"Failed to load manifest {path}, starting a new one: {e}")

        self.manifest = AssetManifest(theme=theme)
        return self.manifest

    def save(self, theme: str) -> Path:
        manifest = self._require()
        self._update_stats()
        manifest.updated_at = utcnow()

        path = self.manifest_path(theme)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(manifest.to_json_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info(f"Saved manifest for {theme}: {manifest.stats.total} cards")
        return path

    def add_card_asset(
        self,
        card_id: str,
        result: ProcessingResult,
        status: AssetStatus = "pending",
    ) -> CardAssetEntry:
        """Record a processing result; re-adding a card bumps its version."""
        manifest = self._require()
        existing = manifest.cards.get(card_id)

        entry = CardAssetEntry(
            definition_id=card_id,
            images=result.output_paths,
            framed_images=result.framed_paths,
            status=status,
            generated_at=utcnow(),
            version=existing.version + 1 if existing else 1,
        )
        manifest.cards[card_id] = entry
        return entry

    def update_from_task(self, task: GenerationTask) -> Optional[CardAssetEntry]:
        """Record a generation task's result; tasks without a result are ignored."""
        if self.manifest is None or task.result is None:
            return None

        status: AssetStatus = task.status if task.status in ("approved", "rejected") else "pending"
        existing = self.manifest.cards.get(task.item_id)

        entry = CardAssetEntry(
            definition_id=task.item_id,
            images=task.result.processed_images,
            framed_images=task.result.framed_images,
            status=status,
            generated_at=task.result.metadata.generated_at,
            version=existing.version + 1 if existing else 1,
        )
        self.manifest.cards[task.item_id] = entry
        return entry

    def update_status(self, card_ids: List[str], status: AssetStatus) -> int:
        """Set review status for the given cards. Returns how many were found."""
        if self.manifest is None:
            return 0

        updated = 0
        for card_id in card_ids:
            entry = self.manifest.cards.get(card_id)
            if entry is None:
                continue
            entry.status = status
            if status in ("approved", "rejected"):
                entry.reviewed_at = utcnow()
            updated += 1
        return updated

    def get_card_asset(self, card_id: str) -> Optional[CardAssetEntry]:
        return self.manifest.cards.get(card_id) if self.manifest else None

    def get_cards_by_status(self, status: AssetStatus) -> List[CardAssetEntry]:
        if self.manifest is None:
            return []
        return [entry for entry in self.manifest.cards.values() if entry.status == status]

    def get_stats(self) -> ManifestStats:
        if self.manifest is None:
            return ManifestStats()
        self._update_stats()
        return self.manifest.stats

    def sync_from_directory(self, theme: str) -> int:
        """
        Add entries for processed files not yet in the manifest.

        Files are matched as <cardId>-<size>[-framed].<format> under
        <output_dir>/<theme>/processed.

        Returns:
            Number of new entries
        """
        manifest = self._require()
        processed_dir = self.output_dir / theme / "processed"
        if not processed_dir.is_dir():
            return 0

        found: Dict[str, Dict[str, SizedPaths]] = {}
        for path in sorted(processed_dir.iterdir()):
            match = PROCESSED_FILE_PATTERN.match(path.name)
            if not match:
                continue
            card_id, size, framed = match.group(1), match.group(2), match.group(3)
            slots = found.setdefault(card_id, {"images": SizedPaths(), "framed": SizedPaths()})
            setattr(slots["framed" if framed else "images"], size, str(path))

        added = 0
        for card_id, slots in found.items():
            if card_id in manifest.cards:
                continue
            framed = slots["framed"]
            manifest.cards[card_id] = CardAssetEntry(
                definition_id=card_id,
                images=slots["images"],
                framed_images=framed if any((framed.small, framed.medium, framed.large)) else None,
            )
            added += 1

        self._update_stats()
        logger.info(f"Synced {added} new cards from {processed_dir}")
        return added

    def export_simplified(self) -> Dict[str, SizedPaths]:
        """Approved cards only, card id -> plain image paths."""
        if self.manifest is None:
            return {}
        return {
            card_id: entry.images
            for card_id, entry in self.manifest.cards.items()
            if entry.status == "approved"
        }

    def _require(self) -> AssetManifest:
        if self.manifest is None:
            raise ManifestNotLoadedError("No manifest loaded")
        return self.manifest

    def _update_stats(self) -> None:
        if self.manifest is None:
            return
        entries = list(self.manifest.cards.values())
        self.manifest.stats = ManifestStats(
            total=len(entries),
            approved=sum(1 for e in entries if e.status == "approved"),
            pending=sum(1 for e in entries if e.status == "pending"),
            rejected=sum(1 for e in entries if e.status == "rejected"),
        )
