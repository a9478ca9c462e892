"""
Unit tests for the asset manifest store.
"""

import json

import pytest

from cardforge.generate.models import GenerationMetadata, GenerationResult, GenerationTask
from cardforge.manifest import AssetManifestStore, ManifestNotLoadedError
from cardforge.models import ProcessingResult, SizedPaths


def make_result(card_id: str, framed: bool = False) -> ProcessingResult:
    paths = SizedPaths(
        small=f"/out/{card_id}-small.webp",
        medium=f"/out/{card_id}-medium.webp",
        large=f"/out/{card_id}-large.webp",
    )
    framed_paths = None
    if framed:
        framed_paths = SizedPaths(
            small=f"/out/{card_id}-small-framed.webp",
            medium=f"/out/{card_id}-medium-framed.webp",
            large=f"/out/{card_id}-large-framed.webp",
        )
    return ProcessingResult(
        task_id=f"process-{card_id}",
        card_id=card_id,
        input_path=f"/raw/{card_id}.png",
        output_paths=paths,
        framed_paths=framed_paths,
    )


class TestAssetManifestStore:
    """Tests for manifest editing and persistence."""

    def test_load_missing_starts_new_manifest(self, tmp_path):
        store = AssetManifestStore(tmp_path)

        manifest = store.load("theme")

        assert manifest.theme == "theme"
        assert manifest.cards == {}

    def test_load_corrupt_starts_new_manifest(self, tmp_path):
        path = tmp_path / "theme" / "manifest.json"
        path.parent.mkdir(parents=True)
        path.write_text("[]", encoding="utf-8")

        manifest = AssetManifestStore(tmp_path).load("theme")

        assert manifest.cards == {}

    def test_edit_before_load_raises(self, tmp_path):
        store = AssetManifestStore(tmp_path)

        with pytest.raises(ManifestNotLoadedError):
            store.add_card_asset("c1", make_result("c1"))

    def test_add_bumps_version(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        store.load("theme")

        first = store.add_card_asset("c1", make_result("c1"))
        second = store.add_card_asset("c1", make_result("c1", framed=True), "approved")

        assert first.version == 1
        assert second.version == 2
        assert second.status == "approved"
        assert second.framed_images.large.endswith("c1-large-framed.webp")

    def test_save_and_reload(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        store.load("theme")
        store.add_card_asset("c1", make_result("c1"), "approved")
        store.add_card_asset("c2", make_result("c2"))

        path = store.save("theme")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["stats"] == {"total": 2, "approved": 1, "pending": 1, "rejected": 0}
        assert data["cards"]["c1"]["definitionId"] == "c1"
        assert "framedImages" not in data["cards"]["c1"]

        reloaded = AssetManifestStore(tmp_path)
        manifest = reloaded.load("theme")
        assert manifest.cards["c2"].images.medium == "/out/c2-medium.webp"

    def test_update_status(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        store.load("theme")
        store.add_card_asset("c1", make_result("c1"))
        store.add_card_asset("c2", make_result("c2"))

        updated = store.update_status(["c1", "missing"], "rejected")

        assert updated == 1
        entry = store.get_card_asset("c1")
        assert entry.status == "rejected"
        assert entry.reviewed_at is not None
        assert store.get_card_asset("c2").reviewed_at is None
        assert [e.definition_id for e in store.get_cards_by_status("rejected")] == ["c1"]

    def test_update_from_task(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        store.load("theme")
        task = GenerationTask(item_id="c1", theme="theme", prompt="p", status="review")

        assert store.update_from_task(task) is None

        task.result = GenerationResult(
            task_id=task.id,
            raw_image_path="/raw/c1.png",
            processed_images=make_result("c1").output_paths,
            metadata=GenerationMetadata(provider="Mock", model="mock-model", prompt="p"),
        )
        entry = store.update_from_task(task)

        # 'review' is not a manifest status; it is recorded as pending
        assert entry.status == "pending"
        assert entry.images.small == "/out/c1-small.webp"
        assert entry.generated_at == task.result.metadata.generated_at

    def test_sync_from_directory(self, tmp_path):
        processed = tmp_path / "theme" / "processed"
        processed.mkdir(parents=True)
        for name in (
            "c1-small.webp",
            "c1-medium.webp",
            "c1-large.webp",
            "c1-large-framed.webp",
            "c2-small.png",
            "notes.txt",
        ):
            (processed / name).write_bytes(b"x")

        store = AssetManifestStore(tmp_path)
        store.load("theme")
        store.add_card_asset("c2", make_result("c2"), "approved")

        added = store.sync_from_directory("theme")

        assert added == 1
        entry = store.get_card_asset("c1")
        assert entry.images.medium == str(processed / "c1-medium.webp")
        assert entry.framed_images.large == str(processed / "c1-large-framed.webp")
        assert entry.framed_images.small == ""
        assert store.get_card_asset("c2").status == "approved"

    def test_sync_without_processed_dir(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        store.load("theme")

        assert store.sync_from_directory("theme") == 0

    def test_stats_and_export(self, tmp_path):
        store = AssetManifestStore(tmp_path)
        assert store.get_stats().total == 0
        assert store.export_simplified() == {}

        store.load("theme")
        store.add_card_asset("c1", make_result("c1"), "approved")
        store.add_card_asset("c2", make_result("c2"), "rejected")

        stats = store.get_stats()
        assert (stats.total, stats.approved, stats.rejected, stats.pending) == (2, 1, 1, 0)

        exported = store.export_simplified()
        assert list(exported) == ["c1"]
        assert exported["c1"].large == "/out/c1-large.webp"
