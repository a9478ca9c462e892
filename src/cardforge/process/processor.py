"""
Image Processor

Turns AI-generated raw artwork into small/medium/large card images:
center crop to the card aspect ratio, fill-resize, optional frame overlay.
"""

import io
import logging
import math
import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from PIL import Image

from ..models import SIZE_NAMES, ImageSize, OutputSpec, ProcessingResult, SizedPaths
from .models import BatchItem, CropRegion, ImageInfo, ProcessOptions, ValidationReport

logger = logging.getLogger(__name__)

PIL_FORMATS = {"png": "PNG", "webp": "WEBP", "jpeg": "JPEG"}

# Allowed drift between the medium aspect ratio and the other sizes
ASPECT_TOLERANCE = 0.01

ProgressCallback = Callable[[int, int], None]


class ImageDimensionError(ValueError):
    """Raised when a raw image cannot be decoded or has no dimensions."""
    pass


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (312.5 -> 313)."""
    return int(math.floor(value + 0.5))


def calculate_crop_region(
    source_width: int,
    source_height: int,
    target_ratio: float,
) -> CropRegion:
    """
    Compute a centered crop matching target_ratio (width / height).

    A wider source keeps its full height and loses a slice on each side;
    a taller source keeps its full width and loses a slice top and bottom.
    """
    source_ratio = source_width / source_height

    if source_ratio > target_ratio:
        crop_height = source_height
        crop_width = round_half_up(source_height * target_ratio)
    else:
        crop_width = source_width
        crop_height = round_half_up(source_width / target_ratio)

    left = round_half_up((source_width - crop_width) / 2)
    top = round_half_up((source_height - crop_height) / 2)

    return CropRegion(left=left, top=top, width=crop_width, height=crop_height)


def read_template(path: Path) -> bytes:
    """Read a frame template from disk."""
    return path.read_bytes()


def frame_dimensions(data: bytes) -> Tuple[int, int]:
    """(width, height) of an encoded template; only the header is decoded."""
    with Image.open(io.BytesIO(data)) as frame:
        return frame.size


def resize_template(data: bytes, target: ImageSize) -> bytes:
    """Fill-resize an encoded frame template and return it as PNG bytes."""
    with Image.open(io.BytesIO(data)) as frame:
        resized = frame.convert("RGBA").resize((target.width, target.height), Image.LANCZOS)

    buffer = io.BytesIO()
    resized.save(buffer, format="PNG")
    return buffer.getvalue()


def save_image(image: Image.Image, path: Path, image_format: str, quality: int) -> None:
    """Encode image to path; quality applies to the lossy formats only."""
    params = {}
    if image_format == "jpeg":
        image = image.convert("RGB")
        params["quality"] = quality
    elif image_format == "webp":
        params["quality"] = quality
    else:
        params["optimize"] = True

    image.save(path, format=PIL_FORMATS[image_format], **params)


class ImageProcessor:
    """
    Crop/resize/frame pipeline for generated card art.

    Frame templates are cached per (template path, size name) for the lifetime
    of the instance. The cache has no staleness detection: call
    clear_frames_cache() after editing template files on disk.
    """

    def __init__(self):
        self.frames_cache: Dict[Tuple[str, str], bytes] = {}
        self._cache_lock = threading.Lock()

    def process(self, options: ProcessOptions) -> ProcessingResult:
        """
        Process a single raw image.

        Args:
            options: Input path, output directory, card id, output spec,
                optional frames directory and rarity

        Returns:
            ProcessingResult with plain and (if requested) framed paths

        Raises:
            ImageDimensionError: If the raw image cannot be decoded
        """
        spec = options.output_spec
        output_dir = Path(options.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        source = self._open_source(Path(options.input_path))

        # One region for every size, derived from the medium target
        medium = spec.sizes.medium
        crop = calculate_crop_region(source.width, source.height, medium.aspect_ratio)
        self._warn_on_aspect_mismatch(spec, options.card_id)

        cropped = source.crop(crop.box)
        framing = spec.with_frame and options.frames_dir is not None

        output_paths = SizedPaths()
        framed_paths = SizedPaths()

        for size in SIZE_NAMES:
            target = spec.sizes.get(size)
            output_path = output_dir / f"{options.card_id}-{size}.{spec.format}"

            resized = cropped.resize((target.width, target.height), Image.LANCZOS)
            save_image(resized, output_path, spec.format, spec.quality)
            setattr(output_paths, size, str(output_path))

            if framing:
                framed_path = output_dir / f"{options.card_id}-{size}-framed.{spec.format}"
                self._add_frame(
                    output_path,
                    framed_path,
                    Path(options.frames_dir),
                    options.rarity or "common",
                    size,
                    spec,
                )
                setattr(framed_paths, size, str(framed_path))

        logger.debug(
            f"Processed {options.card_id}: crop {crop.width}x{crop.height}+{crop.left}+{crop.top}"
        )

        return ProcessingResult(
            task_id=f"process-{options.card_id}",
            card_id=options.card_id,
            input_path=str(options.input_path),
            output_paths=output_paths,
            framed_paths=framed_paths if framing else None,
        )

    def process_batch(
        self,
        items: Iterable[BatchItem],
        output_dir: Path,
        output_spec: OutputSpec,
        frames_dir: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ProcessingResult]:
        """
        Process items one after another.

        A failing item is logged and skipped; on_progress(processed, total)
        is called after every item regardless of outcome.
        """
        items = list(items)
        total = len(items)
        results: List[ProcessingResult] = []

        for index, item in enumerate(items, start=1):
            try:
                result = self.process(
                    ProcessOptions(
                        input_path=item.input_path,
                        output_dir=output_dir,
                        card_id=item.card_id,
                        output_spec=output_spec,
                        frames_dir=frames_dir,
                        rarity=item.rarity,
                    )
                )
                results.append(result)
            except Exception as e:
                logger.error(f"Failed to process {item.card_id}: {e}")

            if on_progress:
                on_progress(index, total)

        logger.info(f"Processed {len(results)}/{total} images into {output_dir}")
        return results

    def clear_frames_cache(self) -> None:
        """Drop all cached frame templates."""
        with self._cache_lock:
            self.frames_cache.clear()

    def get_image_info(self, image_path: Path) -> ImageInfo:
        """Read dimensions, format and byte size of an image file."""
        data = Path(image_path).read_bytes()
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            image_format = (img.format or "unknown").lower()

        return ImageInfo(width=width, height=height, format=image_format, size=len(data))

    def validate_image(
        self,
        image_path: Path,
        min_width: int = 100,
        min_height: int = 100,
    ) -> ValidationReport:
        """Check minimum dimensions and that the file is not empty."""
        issues: List[str] = []
        image_path = Path(image_path)

        if image_path.is_file() and image_path.stat().st_size == 0:
            issues.append("Image file is empty")
            return ValidationReport(valid=False, issues=issues)

        try:
            info = self.get_image_info(image_path)

            if info.width < min_width:
                issues.append(f"Image width ({info.width}) is less than minimum ({min_width})")

            if info.height < min_height:
                issues.append(f"Image height ({info.height}) is less than minimum ({min_height})")

        except Exception as e:
            issues.append(f"Failed to read image: {e}")

        return ValidationReport(valid=not issues, issues=issues)

    def _open_source(self, input_path: Path) -> Image.Image:
        """Decode the raw image fully into memory."""
        try:
            image = Image.open(io.BytesIO(input_path.read_bytes()))
            image.load()
        except OSError as e:
            raise ImageDimensionError(f"Cannot read image dimensions: {input_path}") from e

        if not image.width or not image.height:
            raise ImageDimensionError(f"Cannot read image dimensions: {input_path}")

        if image.mode in ("RGBA", "LA", "PA", "P"):
            return image.convert("RGBA")
        return image.convert("RGB")

    def _warn_on_aspect_mismatch(self, spec: OutputSpec, card_id: str) -> None:
        medium_ratio = spec.sizes.medium.aspect_ratio
        for size in ("small", "large"):
            ratio = spec.sizes.get(size).aspect_ratio
            if abs(ratio - medium_ratio) / medium_ratio > ASPECT_TOLERANCE:
                logger.warning(
                    f"{card_id}: {size} aspect ratio {ratio:.3f} differs from medium "
                    f"{medium_ratio:.3f}; output will be stretched"
                )

    @staticmethod
    def _find_frame_template(frames_dir: Path, rarity: str, size: str) -> Optional[Path]:
        candidates = [
            f"{rarity}-{size}.png",
            f"{rarity}.png",
            f"common-{size}.png",
            "common.png",
        ]
        for name in candidates:
            path = frames_dir / name
            if path.is_file():
                return path
        return None

    def _load_frame(self, template_path: Path, size: str, target: ImageSize) -> bytes:
        """
        Return template bytes sized to target, resizing at most once per key.

        A cached entry whose dimensions no longer match target (another
        OutputSpec on the same instance) is rebuilt and replaced.
        """
        key = (str(template_path), size)
        target_size = (target.width, target.height)

        with self._cache_lock:
            cached = self.frames_cache.get(key)
        if cached is not None and frame_dimensions(cached) == target_size:
            return cached

        data = read_template(template_path)
        frame_size = frame_dimensions(data)

        if frame_size != target_size:
            logger.debug(
                f"Resizing frame {template_path.name} {frame_size} -> {target.width}x{target.height}"
            )
            data = resize_template(data, target)

        with self._cache_lock:
            current = self.frames_cache.get(key)
            if current is not None and frame_dimensions(current) == target_size:
                return current
            self.frames_cache[key] = data
            return data

    def _add_frame(
        self,
        input_path: Path,
        output_path: Path,
        frames_dir: Path,
        rarity: str,
        size: str,
        spec: OutputSpec,
    ) -> None:
        """Composite the frame over the plain image; any framing failure falls back to a copy."""
        template_path = self._find_frame_template(frames_dir, rarity, size)

        if template_path is None:
            logger.debug(f"No frame template for {rarity}/{size} in {frames_dir}, copying plain image")
            shutil.copyfile(input_path, output_path)
            return

        try:
            frame_data = self._load_frame(template_path, size, spec.sizes.get(size))

            with Image.open(input_path) as base:
                base_rgba = base.convert("RGBA")
            with Image.open(io.BytesIO(frame_data)) as frame:
                overlay = frame.convert("RGBA")

            framed = Image.alpha_composite(base_rgba, overlay)
            save_image(framed, output_path, spec.format, spec.quality)
        except Exception as e:
            logger.warning(
                f"Framing {output_path.name} with {template_path.name} failed, "
                f"copying plain image: {e}"
            )
            shutil.copyfile(input_path, output_path)
