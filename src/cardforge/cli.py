"""
CardForge CLI
Command-line interface for the card artwork pipeline.
"""

import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional

import click

from . import __version__
from .config import settings

IMAGE_SUFFIXES = re.compile(r"\.(png|jpg|jpeg|webp)$", re.IGNORECASE)


def _output_root(output: Optional[Path]) -> Path:
    if output:
        return Path(output)
    settings.ensure_directories()
    return settings.output_dir


def _load_style_guide(output: Path, theme: str):
    from .generate.prompts import StyleGuideNotFoundError, StyleGuideStore

    try:
        return StyleGuideStore(output / "style-guides").get(theme)
    except StyleGuideNotFoundError:
        raise click.ClickException(
            f"No style guide for theme '{theme}'. Run 'cardforge init --theme {theme}' first."
        )


def _load_cards(cards_file: Path) -> list:
    """Card definitions from a JSON list or {"cards": [...]}."""
    from .models import CardDefinition

    data = json.loads(cards_file.read_text(encoding="utf-8"))
    cards = data.get("cards", []) if isinstance(data, dict) else data
    if not cards:
        raise click.ClickException(f"No cards found in {cards_file}")
    return [CardDefinition.model_validate(card) for card in cards]


def _open_manager(output: Path, theme: str):
    """BatchManager without a provider, resumed from the checkpoint."""
    from .generate.batch import BatchManager

    manager = BatchManager(theme, output_dir=output)
    if not manager.load_state():
        raise click.ClickException(f"No batch checkpoint for theme '{theme}' in {output}")
    return manager


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """CardForge - card artwork generation pipeline"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
def init(theme: str, output: Optional[Path]):
    """Write the theme's style guide (preset or blank) for editing."""
    from .generate.prompts import PRESET_STYLE_GUIDES, StyleGuideNotFoundError, StyleGuideStore

    output = _output_root(output)
    store = StyleGuideStore(output / "style-guides")

    try:
        guide = store.get(theme)
    except StyleGuideNotFoundError:
        guide = store.create(theme)

    path = store.save(guide)
    click.echo(f"✅ Style guide saved to: {path}")

    click.echo("\nBuilt-in style guides:")
    for guide_id in PRESET_STYLE_GUIDES:
        click.echo(f"  - {guide_id}")


@cli.command("list-guides")
def list_guides():
    """List built-in style guides."""
    from .generate.prompts import PRESET_STYLE_GUIDES

    for guide_id, guide in PRESET_STYLE_GUIDES.items():
        click.echo(f"{guide_id}")
        click.echo(f"   Name:  {guide.name}")
        if guide.description:
            click.echo(f"   About: {guide.description}")
        click.echo(f"   Style: {guide.visual_spec.art_style}")
        click.echo(f"   Mood:  {guide.visual_spec.mood}")
        click.echo()


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option(
    "--cards", "-c", "cards_file", required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Card definitions JSON file",
)
@click.option(
    "--output", "-o", "prompts_file", type=click.Path(dir_okay=False, path_type=Path),
    default=Path("prompts.json"), show_default=True, help="Prompts JSON file",
)
@click.option("--root", type=click.Path(path_type=Path), help="Output root holding style-guides/")
@click.option("--preview", is_flag=True, help="Print distribution and sample prompts, write nothing")
def extract(theme: str, cards_file: Path, prompts_file: Path, root: Optional[Path], preview: bool):
    """Build the prompt for every card in a definitions file."""
    from .generate.prompts import PromptBuilder

    guide = _load_style_guide(_output_root(root), theme)
    cards = _load_cards(cards_file)
    builder = PromptBuilder(guide)

    if preview:
        summary = builder.preview(cards)
        click.echo(f"\n📋 Preview for {theme}")
        click.echo(f"   Total cards: {summary.total_cards}")
        click.echo("   By type:     " + ", ".join(f"{k}={v}" for k, v in summary.by_type.items()))
        click.echo("   By rarity:   " + ", ".join(f"{k}={v}" for k, v in summary.by_rarity.items()))

        click.echo("\nSample prompts:")
        for sample in summary.sample_prompts:
            click.echo(f"\n  [{sample.card_name}]")
            click.echo(f"  {sample.prompt[:200]}")
        return

    prompts = builder.build_many(cards)
    prompts_file.parent.mkdir(parents=True, exist_ok=True)
    prompts_file.write_text(
        json.dumps([p.to_json_dict() for p in prompts], indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    click.echo(f"✅ Prompts saved to: {prompts_file}")
    click.echo(f"   {len(prompts)} cards")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--card", "card_id", required=True, help="Card id")
@click.option(
    "--cards", "-c", "cards_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Card definitions JSON file to look the card up in",
)
@click.option("--provider", "-p", type=click.Choice(["mock", "openai"]), default=None)
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
@click.option("--prompt", "custom_prompt", default=None, help="Use this prompt as is")
def generate(
    theme: str,
    card_id: str,
    cards_file: Optional[Path],
    provider: Optional[str],
    output: Optional[Path],
    custom_prompt: Optional[str],
):
    """Generate one card image (outside any batch)."""
    from .generate.generator import ImageGenerator
    from .generate.models import GenerateOptions
    from .generate.prompts import PromptBuilder
    from .generate.providers import ProviderConfigError, create_provider
    from .models import CardDefinition

    output = _output_root(output)
    guide = _load_style_guide(output, theme)

    prompt = custom_prompt
    negative_prompt = None
    if not prompt:
        cards = {card.id: card for card in _load_cards(cards_file)} if cards_file else {}
        card = cards.get(card_id) or CardDefinition(id=card_id, name=card_id)
        generated = PromptBuilder(guide).build(card)
        prompt, negative_prompt = generated.prompt, generated.negative_prompt

    try:
        provider_client = create_provider(provider)
    except ProviderConfigError as e:
        raise click.ClickException(str(e)) from e

    generator = ImageGenerator(provider_client, output / theme / "raw")
    click.echo(f"🎨 Prompt: {prompt[:80]}")

    async def _run():
        try:
            return await generator.generate(
                GenerateOptions(prompt=prompt, negative_prompt=negative_prompt),
                f"{card_id}.png",
            )
        finally:
            await generator.aclose()

    try:
        result = asyncio.run(_run())
    except Exception as e:
        raise click.ClickException(f"Generation failed: {e}") from e

    click.echo(f"✅ Saved to: {result.saved_path}")
    if result.image.revised_prompt:
        click.echo(f"\nRevised prompt:\n  {result.image.revised_prompt}")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option(
    "--cards", "-c", "cards_file", required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Card definitions JSON file",
)
@click.option("--provider", "-p", type=click.Choice(["mock", "openai"]), default=None)
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
@click.option("--concurrency", type=int, default=None, help="Tasks per chunk")
@click.option("--no-review", is_flag=True, help="Approve successful tasks directly")
@click.option("--retry-failed", is_flag=True, help="Give failed tasks a fresh attempt budget first")
def batch(
    theme: str,
    cards_file: Path,
    provider: Optional[str],
    output: Optional[Path],
    concurrency: Optional[int],
    no_review: bool,
    retry_failed: bool,
):
    """Generate artwork for every card in a definitions file."""
    from .generate.batch import BatchHooks, BatchManager
    from .generate.generator import ImageGenerator
    from .generate.prompts import PromptBuilder
    from .generate.providers import ProviderConfigError, create_provider

    output = _output_root(output)
    guide = _load_style_guide(output, theme)
    cards = _load_cards(cards_file)

    try:
        provider_client = create_provider(provider)
    except ProviderConfigError as e:
        raise click.ClickException(str(e)) from e

    generator = ImageGenerator(provider_client, output / theme / "raw")

    hooks = BatchHooks(
        on_task_complete=lambda task: click.echo(f"  ✅ {task.item_id}"),
        on_task_fail=lambda task, error: click.echo(
            f"  ❌ {task.item_id} ({task.attempts}/{task.max_attempts}): {error}"
        ),
        on_batch_progress=lambda status: click.echo(
            f"Progress: {status.completed}/{status.total} ({status.progress}%)"
        ),
    )

    manager = BatchManager(
        theme,
        PromptBuilder(guide),
        generator,
        output_dir=output,
        concurrency=concurrency,
        enable_review=False if no_review else None,
        hooks=hooks,
    )
    manager.add_cards(cards, theme)

    if retry_failed:
        manager.load_state()
        count = manager.retry_failed()
        click.echo(f"Reset {count} failed tasks")

    click.echo(f"🎨 Generating artwork for {len(cards)} cards ({generator.get_provider_info().name})")

    async def _run():
        try:
            return await manager.run()
        finally:
            await generator.aclose()

    results = asyncio.run(_run())

    completed = sum(1 for task in results if task.status in ("approved", "review"))
    failed = sum(1 for task in results if task.status == "failed")
    retrying = sum(1 for task in results if task.status == "pending")

    click.echo("\nBatch finished:")
    click.echo(f"  Succeeded: {completed}")
    click.echo(f"  Failed:    {failed}")
    if retrying:
        click.echo(f"  Will retry on next run: {retrying}")
    click.echo(f"  Output:    {output / theme}")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
@click.option(
    "--frames", type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Frame template directory",
)
def process(theme: str, output: Optional[Path], frames: Optional[Path]):
    """Crop, resize and frame raw artwork; record results in the manifest."""
    from .generate.batch import BatchManager
    from .manifest import AssetManifestStore
    from .process.models import BatchItem
    from .process.processor import ImageProcessor

    output = _output_root(output)
    guide = _load_style_guide(output, theme)

    raw_dir = output / theme / "raw"
    processed_dir = output / theme / "processed"
    if not raw_dir.is_dir():
        raise click.ClickException(f"Raw image directory not found: {raw_dir}")

    image_files = sorted(p for p in raw_dir.iterdir() if IMAGE_SUFFIXES.search(p.name))
    if not image_files:
        click.echo("⚠️  No raw images to process")
        return

    # Rarity comes from the card definitions stored in the checkpoint
    manager = BatchManager(theme, output_dir=output)
    manager.load_state()

    items: List[BatchItem] = []
    for path in image_files:
        card_id = IMAGE_SUFFIXES.sub("", path.name)
        task = manager.get_task(card_id)
        rarity = task.item.rarity if task and task.item else None
        items.append(BatchItem(input_path=path, card_id=card_id, rarity=rarity or "common"))

    click.echo(f"Processing {len(items)} images...")
    processor = ImageProcessor()
    results = processor.process_batch(
        items,
        processed_dir,
        guide.output_spec,
        frames_dir=frames,
        on_progress=lambda current, total: click.echo(f"  {current}/{total}"),
    )

    store = AssetManifestStore(output)
    store.load(theme)
    for result in results:
        store.add_card_asset(result.card_id, result, "pending")
    store.save(theme)

    click.echo(f"✅ Processed {len(results)}/{len(items)} images into {processed_dir}")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
def status(theme: str, output: Optional[Path]):
    """Show batch and manifest status."""
    from .generate.batch import BatchManager
    from .manifest import AssetManifestStore

    output = _output_root(output)
    click.echo(f"\nTheme: {theme}")
    click.echo("=" * 40)

    manager = BatchManager(theme, output_dir=output)
    if manager.load_state():
        batch_status = manager.get_status()
        click.echo("\nGeneration:")
        click.echo(f"  Total:     {batch_status.total}")
        click.echo(f"  Pending:   {batch_status.pending}")
        click.echo(f"  Review:    {batch_status.review}")
        click.echo(f"  Approved:  {batch_status.approved}")
        click.echo(f"  Rejected:  {batch_status.rejected}")
        click.echo(f"  Failed:    {batch_status.failed}")
        click.echo(f"  Progress:  {batch_status.progress}%")
    else:
        click.echo("\nGeneration: no checkpoint")

    store = AssetManifestStore(output)
    manifest = store.load(theme)
    stats = store.get_stats()
    click.echo("\nAssets:")
    click.echo(f"  Total:     {stats.total}")
    click.echo(f"  Approved:  {stats.approved}")
    click.echo(f"  Pending:   {stats.pending}")
    click.echo(f"  Rejected:  {stats.rejected}")
    click.echo(f"\nManifest version: {manifest.version}")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
def retry(theme: str, output: Optional[Path]):
    """Reset failed tasks in the checkpoint so the next batch retries them."""
    output = _output_root(output)
    manager = _open_manager(output, theme)

    count = manager.retry_failed()
    manager.save_state()
    click.echo(f"Reset {count} failed tasks to pending")


@cli.command()
@click.option("--theme", "-t", required=True, help="Theme id")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output root")
@click.option("--approve", "approved", multiple=True, help="Card id to approve (repeatable)")
@click.option("--reject", "rejected", multiple=True, help="Card id to reject (repeatable)")
def review(theme: str, output: Optional[Path], approved: tuple, rejected: tuple):
    """Record review decisions for generated artwork."""
    from .manifest import AssetManifestStore

    output = _output_root(output)
    manager = _open_manager(output, theme)

    unknown = [
        card_id for card_id in approved if not manager.update_task_status(card_id, "approved")
    ] + [
        card_id for card_id in rejected if not manager.update_task_status(card_id, "rejected")
    ]
    manager.save_state()

    store = AssetManifestStore(output)
    store.load(theme)
    store.update_status(list(approved), "approved")
    store.update_status(list(rejected), "rejected")
    store.save(theme)

    click.echo(f"Approved {len(approved)}, rejected {len(rejected)}")
    if unknown:
        click.echo(f"⚠️  Unknown card ids: {', '.join(unknown)}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--min-width", default=100, help="Minimum width in pixels")
@click.option("--min-height", default=100, help="Minimum height in pixels")
def validate(path: Path, min_width: int, min_height: int):
    """Check an image against minimum dimensions."""
    from .process.processor import ImageProcessor

    report = ImageProcessor().validate_image(path, min_width, min_height)

    if report.valid:
        click.echo(f"✅ {path.name} is valid")
        return

    click.echo(f"❌ {path.name}:")
    for issue in report.issues:
        click.echo(f"   - {issue}")
    sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
