"""
Unit tests for the image processor.
Tests crop geometry, sized outputs, frame lookup/caching and batch processing.
"""

import logging
from unittest.mock import patch

import pytest
from PIL import Image

from cardforge.models import ImageSize, OutputSizes, OutputSpec
from cardforge.process import processor as processor_module
from cardforge.process.models import BatchItem, ProcessOptions
from cardforge.process.processor import (
    ImageDimensionError,
    ImageProcessor,
    calculate_crop_region,
    round_half_up,
)


def png_spec(**kwargs) -> OutputSpec:
    """Lossless output so pixel values can be asserted exactly."""
    return OutputSpec(format="png", **kwargs)


def make_frame(directory, name, size=(50, 70), color=(255, 0, 0, 255)):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    Image.new("RGBA", size, color).save(path, format="PNG")
    return path


class TestCropRegion:
    """Tests for centered crop calculation."""

    def test_wide_source_is_cropped_on_the_sides(self):
        """1000x500 at 3:4 keeps full height and centers a 375px slice."""
        region = calculate_crop_region(1000, 500, 3 / 4)

        assert region.width == 375
        assert region.height == 500
        assert region.top == 0
        # (1000 - 375) / 2 = 312.5 rounds half up
        assert region.left == 313

    def test_tall_source_is_cropped_top_and_bottom(self):
        region = calculate_crop_region(500, 1000, 0.7)

        assert region.width == 500
        assert region.height == 714
        assert region.left == 0
        assert region.top == 143

    def test_matching_ratio_keeps_whole_image(self):
        region = calculate_crop_region(280, 400, 0.7)

        assert (region.left, region.top, region.width, region.height) == (0, 0, 280, 400)

    def test_box_is_pillow_crop_tuple(self):
        region = calculate_crop_region(1000, 500, 3 / 4)

        assert region.box == (313, 0, 688, 500)

    def test_round_half_up(self):
        assert round_half_up(312.5) == 313
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2


class TestProcess:
    """Tests for single-image processing."""

    def test_writes_every_size_with_exact_dimensions(self, tmp_path, make_image):
        source = make_image("raw.png", size=(1024, 1024))
        out_dir = tmp_path / "processed"

        result = ImageProcessor().process(
            ProcessOptions(input_path=source, output_dir=out_dir, card_id="c1")
        )

        spec = OutputSpec()
        for size in ("small", "medium", "large"):
            path = getattr(result.output_paths, size)
            assert path.endswith(f"c1-{size}.webp")
            with Image.open(path) as img:
                assert img.size == (spec.sizes.get(size).width, spec.sizes.get(size).height)
                assert img.format == "WEBP"

        assert result.card_id == "c1"
        assert result.task_id == "process-c1"
        assert result.input_path == str(source)

    def test_no_framed_paths_without_frames_dir(self, tmp_path, make_image):
        source = make_image("raw.png")

        result = ImageProcessor().process(
            ProcessOptions(input_path=source, output_dir=tmp_path / "out", card_id="c1")
        )

        assert result.framed_paths is None
        assert not list((tmp_path / "out").glob("*-framed.*"))

    def test_no_framed_paths_when_frame_disabled(self, tmp_path, make_image):
        source = make_image("raw.png")
        frames = tmp_path / "frames"
        make_frame(frames, "common.png")

        result = ImageProcessor().process(
            ProcessOptions(
                input_path=source,
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=png_spec(with_frame=False),
                frames_dir=frames,
            )
        )

        assert result.framed_paths is None

    def test_jpeg_output_from_rgba_source(self, tmp_path, make_image):
        """RGBA art is flattened for JPEG output."""
        source = make_image("raw.png", mode="RGBA", color=(10, 20, 30, 128))

        result = ImageProcessor().process(
            ProcessOptions(
                input_path=source,
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=OutputSpec(format="jpeg", quality=80),
            )
        )

        assert result.output_paths.large.endswith("c1-large.jpeg")
        with Image.open(result.output_paths.large) as img:
            assert img.format == "JPEG"
            assert img.mode == "RGB"

    def test_missing_file_raises_dimension_error(self, tmp_path):
        with pytest.raises(ImageDimensionError):
            ImageProcessor().process(
                ProcessOptions(
                    input_path=tmp_path / "nope.png",
                    output_dir=tmp_path / "out",
                    card_id="c1",
                )
            )

    def test_corrupt_file_raises_dimension_error(self, tmp_path):
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"definitely not an image")

        with pytest.raises(ImageDimensionError):
            ImageProcessor().process(
                ProcessOptions(input_path=broken, output_dir=tmp_path / "out", card_id="c1")
            )

    def test_warns_when_size_ratios_disagree(self, tmp_path, make_image, caplog):
        source = make_image("raw.png")
        spec = png_spec(
            sizes=OutputSizes(small=ImageSize(width=100, height=100)),
            with_frame=False,
        )

        with caplog.at_level(logging.WARNING, logger="cardforge.process.processor"):
            ImageProcessor().process(
                ProcessOptions(
                    input_path=source, output_dir=tmp_path / "out", card_id="c1", output_spec=spec
                )
            )

        assert "small aspect ratio" in caplog.text
        assert "large aspect ratio" not in caplog.text


class TestFrames:
    """Tests for frame template lookup, caching and compositing."""

    def test_rarity_template_used_for_every_size(self, tmp_path, make_image):
        """Only rare.png exists: it is resized for each size and composited."""
        source = make_image("raw.png", color=(0, 0, 255))
        frames = tmp_path / "frames"
        template = make_frame(frames, "rare.png")

        processor = ImageProcessor()
        result = processor.process(
            ProcessOptions(
                input_path=source,
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=png_spec(),
                frames_dir=frames,
                rarity="rare",
            )
        )

        for size in ("small", "medium", "large"):
            framed = getattr(result.framed_paths, size)
            assert framed.endswith(f"c1-{size}-framed.png")
            with Image.open(framed) as img:
                # Opaque red frame covers the blue art entirely
                assert img.convert("RGB").getpixel((0, 0)) == (255, 0, 0)

        assert set(processor.frames_cache) == {
            (str(template), "small"),
            (str(template), "medium"),
            (str(template), "large"),
        }

    def test_template_read_and_resized_once_per_size(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        make_frame(frames, "rare.png")
        spec = png_spec()
        processor = ImageProcessor()

        with patch(
            "cardforge.process.processor.read_template",
            wraps=processor_module.read_template,
        ) as read_spy, patch(
            "cardforge.process.processor.resize_template",
            wraps=processor_module.resize_template,
        ) as resize_spy:
            for card_id in ("c1", "c2"):
                processor.process(
                    ProcessOptions(
                        input_path=make_image(f"{card_id}.png"),
                        output_dir=tmp_path / "out",
                        card_id=card_id,
                        output_spec=spec,
                        frames_dir=frames,
                        rarity="rare",
                    )
                )

        assert read_spy.call_count == 3
        assert resize_spy.call_count == 3
        large_calls = [c for c in resize_spy.call_args_list if c.args[1] == spec.sizes.large]
        assert len(large_calls) == 1

    def test_template_at_target_size_is_not_resized(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        make_frame(frames, "common-large.png", size=(280, 400))

        with patch(
            "cardforge.process.processor.resize_template",
            wraps=processor_module.resize_template,
        ) as resize_spy:
            ImageProcessor().process(
                ProcessOptions(
                    input_path=make_image("raw.png"),
                    output_dir=tmp_path / "out",
                    card_id="c1",
                    output_spec=png_spec(),
                    frames_dir=frames,
                )
            )

        # small and medium fall back to nothing: only large has a template
        assert resize_spy.call_count == 0

    def test_lookup_prefers_rarity_size_then_rarity_then_common(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        rare_large = make_frame(frames, "rare-large.png")
        rare = make_frame(frames, "rare.png")
        common_small = make_frame(frames, "common-small.png")

        assert ImageProcessor._find_frame_template(frames, "rare", "large") == rare_large
        assert ImageProcessor._find_frame_template(frames, "rare", "small") == rare
        assert ImageProcessor._find_frame_template(frames, "epic", "small") == common_small
        assert ImageProcessor._find_frame_template(frames, "epic", "medium") is None

    def test_missing_rarity_defaults_to_common(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        common = make_frame(frames, "common.png")
        processor = ImageProcessor()

        processor.process(
            ProcessOptions(
                input_path=make_image("raw.png"),
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=png_spec(),
                frames_dir=frames,
            )
        )

        assert (str(common), "medium") in processor.frames_cache

    def test_no_template_copies_plain_image(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        frames.mkdir()

        result = ImageProcessor().process(
            ProcessOptions(
                input_path=make_image("raw.png"),
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=png_spec(),
                frames_dir=frames,
                rarity="legendary",
            )
        )

        for size in ("small", "medium", "large"):
            plain = getattr(result.output_paths, size)
            framed = getattr(result.framed_paths, size)
            with open(plain, "rb") as a, open(framed, "rb") as b:
                assert a.read() == b.read()

    def test_clear_frames_cache(self, tmp_path, make_image):
        frames = tmp_path / "frames"
        make_frame(frames, "common.png")
        processor = ImageProcessor()

        processor.process(
            ProcessOptions(
                input_path=make_image("raw.png"),
                output_dir=tmp_path / "out",
                card_id="c1",
                output_spec=png_spec(),
                frames_dir=frames,
            )
        )
        assert processor.frames_cache

        processor.clear_frames_cache()
        assert processor.frames_cache == {}


    def test_unreadable_template_falls_back_to_copy(self, tmp_path, make_image, caplog):
        frames = tmp_path / "frames"
        frames.mkdir()
        (frames / "common.png").write_bytes(b"not a png")

        with caplog.at_level(logging.WARNING, logger="cardforge.process.processor"):
            results = ImageProcessor().process_batch(
                [BatchItem(input_path=make_image("a.png"), card_id="a")],
                tmp_path / "out",
                png_spec(),
                frames_dir=frames,
            )

        assert len(results) == 1
        result = results[0]
        with open(result.output_paths.small, "rb") as a, open(result.framed_paths.small, "rb") as b:
            assert a.read() == b.read()
        assert "copying plain image" in caplog.text

    def test_cache_rebuilt_for_different_dimensions(self, tmp_path, make_image):
        """One instance serving two output specs with different sizes."""
        frames = tmp_path / "frames"
        template = make_frame(frames, "common.png")
        processor = ImageProcessor()

        processor.process(
            ProcessOptions(
                input_path=make_image("a.png"),
                output_dir=tmp_path / "out-default",
                card_id="a",
                output_spec=png_spec(),
                frames_dir=frames,
            )
        )

        small_spec = png_spec(
            sizes=OutputSizes(
                small=ImageSize(width=60, height=80),
                medium=ImageSize(width=60, height=80),
                large=ImageSize(width=120, height=160),
            )
        )
        result = processor.process(
            ProcessOptions(
                input_path=make_image("b.png"),
                output_dir=tmp_path / "out-small",
                card_id="b",
                output_spec=small_spec,
                frames_dir=frames,
            )
        )

        with Image.open(result.framed_paths.small) as img:
            assert img.size == (60, 80)
            assert img.convert("RGB").getpixel((0, 0)) == (255, 0, 0)
        cached = processor.frames_cache[(str(template), "small")]
        assert processor_module.frame_dimensions(cached) == (60, 80)


class TestProcessBatch:
    """Tests for sequential batch processing."""

    def test_failed_item_is_skipped_and_progress_reported(self, tmp_path, make_image):
        items = [
            BatchItem(input_path=make_image("a.png"), card_id="a"),
            BatchItem(input_path=tmp_path / "missing.png", card_id="b"),
            BatchItem(input_path=make_image("c.png"), card_id="c", rarity="rare"),
        ]
        progress = []

        results = ImageProcessor().process_batch(
            items,
            tmp_path / "out",
            png_spec(with_frame=False),
            on_progress=lambda current, total: progress.append((current, total)),
        )

        assert [r.card_id for r in results] == ["a", "c"]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_empty_batch(self, tmp_path):
        results = ImageProcessor().process_batch([], tmp_path / "out", OutputSpec())

        assert results == []


class TestImageInfo:
    """Tests for image inspection and validation."""

    def test_get_image_info(self, make_image):
        path = make_image("photo.jpg", size=(120, 90), fmt="JPEG")

        info = ImageProcessor().get_image_info(path)

        assert (info.width, info.height) == (120, 90)
        assert info.format == "jpeg"
        assert info.size == path.stat().st_size

    def test_valid_image(self, make_image):
        report = ImageProcessor().validate_image(make_image("ok.png", size=(200, 300)))

        assert report.valid is True
        assert report.issues == []

    def test_too_small_image_lists_both_dimensions(self, make_image):
        report = ImageProcessor().validate_image(make_image("tiny.png", size=(50, 60)))

        assert report.valid is False
        assert report.issues == [
            "Image width (50) is less than minimum (100)",
            "Image height (60) is less than minimum (100)",
        ]

    def test_custom_minimums(self, make_image):
        report = ImageProcessor().validate_image(
            make_image("tiny.png", size=(50, 60)), min_width=40, min_height=40
        )

        assert report.valid is True

    def test_empty_file(self, tmp_path):
        empty = tmp_path / "empty.png"
        empty.write_bytes(b"")

        report = ImageProcessor().validate_image(empty)

        assert report.valid is False
        assert report.issues == ["Image file is empty"]

    def test_unreadable_file(self, tmp_path):
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"garbage")

        report = ImageProcessor().validate_image(broken)

        assert report.valid is False
        assert report.issues[0].startswith("Failed to read image:")
