"""
Style Guides and Prompt Building

A style guide carries a theme's prompt template, visual spec and output spec.
PromptBuilder composes a card's prompt from it.
"""

import json
import logging
import re
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import Field

from ..models import CamelModel, CardDefinition, OutputSpec

logger = logging.getLogger(__name__)


class StyleGuideNotFoundError(KeyError):
    """Raised when no file or preset exists for a theme."""
    pass


class PromptTemplate(CamelModel):
    base: str = ""
    by_type: Dict[str, str] = Field(default_factory=dict)
    by_rarity: Dict[str, str] = Field(default_factory=dict)
    by_series: Dict[str, str] = Field(default_factory=dict)
    negative: str = "text, watermark, signature, blurry, low quality, ugly, deformed"


class VisualSpec(CamelModel):
    art_style: str = "digital illustration"
    color_palette: List[str] = Field(default_factory=list)
    mood: str = ""
    perspective: str = ""
    keywords: List[str] = Field(default_factory=list)


class StyleGuide(CamelModel):
    """Per-theme prompt and output configuration."""

    id: str
    name: str
    description: Optional[str] = None
    prompt_template: PromptTemplate = Field(default_factory=PromptTemplate)
    visual_spec: VisualSpec = Field(default_factory=VisualSpec)
    output_spec: OutputSpec = Field(default_factory=OutputSpec)
    visual_mappings: Dict[str, str] = Field(default_factory=dict)  # card name -> visual
    custom_prompts: Dict[str, str] = Field(default_factory=dict)  # card id -> full prompt


class GeneratedPrompt(CamelModel):
    card_id: str
    card_name: str
    prompt: str
    negative_prompt: str


class PromptPreview(CamelModel):
    total_cards: int
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_rarity: Dict[str, int] = Field(default_factory=dict)
    sample_prompts: List[GeneratedPrompt] = Field(default_factory=list)


# Description words that translate into scene elements
DESCRIPTION_VISUALS = {
    "overtime": "working overtime",
    "work": "working",
    "rest": "resting",
    "study": "studying",
    "meeting": "meeting",
    "present": "presenting",
    "coffee": "coffee",
    "computer": "computer",
    "phone": "smartphone",
    "code": "code on screen",
    "tired": "tired expression",
    "happy": "happy expression",
    "stress": "stressed",
    "success": "success celebration",
    "office": "office environment",
    "home": "home setting",
    "boss": "boss figure",
    "team": "team members",
}

TAG_VISUALS = {
    "work": "professional office setting",
    "rest": "relaxation scene",
    "risk": "tension and uncertainty",
    "overtime": "late night work atmosphere",
    "social": "people interaction",
    "growth": "progress and improvement symbols",
    "health": "wellness and vitality",
    "money": "financial symbols",
    "career": "career advancement imagery",
    "team": "collaborative environment",
    "solo": "individual focused",
    "urgent": "time pressure elements",
    "strategic": "chess-like strategic thinking",
}

MAX_DESCRIPTION_KEYWORDS = 5


class PromptBuilder:
    """Composes image prompts for cards from a StyleGuide."""

    def __init__(self, style_guide: StyleGuide):
        self.style_guide = style_guide

    def build(self, card: CardDefinition) -> GeneratedPrompt:
        """
        Build the prompt for one card.

        A custom prompt for the card id wins outright; otherwise the prompt is
        composed from base style, type, rarity, series, card content and the
        visual spec, in that order.
        """
        template = self.style_guide.prompt_template
        visual = self.style_guide.visual_spec

        custom = self.style_guide.custom_prompts.get(card.id)
        if custom:
            return GeneratedPrompt(
                card_id=card.id,
                card_name=card.name,
                prompt=custom,
                negative_prompt=template.negative,
            )

        parts = [
            template.base,
            template.by_type.get(card.type, ""),
            template.by_rarity.get(card.rarity, "") if card.rarity else "",
            template.by_series.get(card.series, "") if card.series else "",
            self._content_prompt(card),
            visual.art_style,
        ]
        if visual.color_palette:
            parts.append(f"color palette: {', '.join(visual.color_palette[:3])}")
        parts.extend([visual.mood, visual.perspective])
        if visual.keywords:
            parts.append(", ".join(visual.keywords))

        return GeneratedPrompt(
            card_id=card.id,
            card_name=card.name,
            prompt=clean_prompt(", ".join(p for p in parts if p)),
            negative_prompt=template.negative,
        )

    def build_many(self, cards: Iterable[CardDefinition]) -> List[GeneratedPrompt]:
        return [self.build(card) for card in cards]

    def preview(self, cards: Iterable[CardDefinition], sample_size: int = 5) -> PromptPreview:
        """Card distribution by type and rarity plus the first few prompts."""
        cards = list(cards)
        by_rarity = Counter(card.rarity for card in cards if card.rarity)

        return PromptPreview(
            total_cards=len(cards),
            by_type=dict(Counter(card.type for card in cards)),
            by_rarity=dict(by_rarity),
            sample_prompts=self.build_many(cards[:sample_size]),
        )

    def update_style_guide(self, style_guide: StyleGuide) -> None:
        self.style_guide = style_guide

    def add_visual_mapping(self, card_name: str, visual: str) -> None:
        """Use visual as the content description for every card named card_name."""
        self.style_guide.visual_mappings[card_name] = visual

    def add_custom_prompt(self, card_id: str, prompt: str) -> None:
        """Replace the composed prompt for card_id entirely."""
        self.style_guide.custom_prompts[card_id] = prompt

    def _content_prompt(self, card: CardDefinition) -> str:
        mapped = self.style_guide.visual_mappings.get(card.name)
        if mapped:
            return mapped

        elements = [f"subject: {card.name}"]

        keywords = extract_description_keywords(card.description)
        if keywords:
            elements.append(f"scene elements: {', '.join(keywords)}")

        tag_visuals = [TAG_VISUALS[tag] for tag in card.tags if tag in TAG_VISUALS]
        if tag_visuals:
            elements.append(", ".join(tag_visuals))

        return ", ".join(elements)


def extract_description_keywords(description: str) -> List[str]:
    """Map words of a card description onto visual keywords (numbers ignored)."""
    text = re.sub(r"[+-]?\d+", "", description).lower()
    keywords = [visual for word, visual in DESCRIPTION_VISUALS.items() if word in text]
    return keywords[:MAX_DESCRIPTION_KEYWORDS]


def clean_prompt(prompt: str) -> str:
    """Collapse whitespace and stray commas."""
    prompt = re.sub(r"\s+", " ", prompt)
    prompt = re.sub(r",\s*,", ",", prompt)
    prompt = re.sub(r"^,\s*|,\s*$", "", prompt)
    prompt = re.sub(r",\s*", ", ", prompt)
    return prompt.strip()


PRESET_STYLE_GUIDES: Dict[str, StyleGuide] = {
    "bigtech-worker": StyleGuide(
        id="bigtech-worker",
        name="Big Tech Worker",
        description="Office survival at a large internet company; modern, a little humorous",
        prompt_template=PromptTemplate(
            base="minimalist flat illustration, modern tech office theme, clean vector art style, soft shadows",
            by_type={
                "action": "dynamic pose, motion elements, energetic composition",
                "event": "scene-based illustration, environmental storytelling, narrative moment",
                "resource": "iconic centered object, simple background, symbolic representation",
                "character": "portrait style, expressive character, professional attire",
                "modifier": "abstract glowing symbol, floating elements, magical effect",
            },
            by_rarity={
                "common": "simple clean design, muted pastel colors, minimal details",
                "uncommon": "subtle details, soft glow effect, slightly vibrant colors",
                "rare": "intricate details, vibrant colors, sparkle effects, premium feel",
                "legendary": "epic dramatic composition, golden accents, lens flare, mythical atmosphere",
            },
            by_series={
                "work": "office desk, computer, documents, professional setting",
                "business": "charts, money, business symbols, corporate imagery",
                "health": "wellness symbols, medical elements, lifestyle imagery",
                "social": "people interaction, communication symbols, community",
                "growth": "upward arrows, learning symbols, achievement badges",
            },
            negative=(
                "text, watermark, signature, blurry, low quality, realistic photo, "
                "3D render, anime, cartoon face, ugly, deformed"
            ),
        ),
        visual_spec=VisualSpec(
            art_style="flat vector illustration with subtle gradients and soft shadows",
            color_palette=["#4A90D9", "#7C3AED", "#10B981", "#F59E0B", "#EF4444", "#6366F1"],
            mood="modern, slightly humorous, relatable, professional yet approachable",
            perspective="isometric or front-facing, slightly elevated viewpoint",
            keywords=["tech", "startup", "office", "modern", "digital", "professional"],
        ),
        visual_mappings={
            "Overtime": "person working late at glowing computer screen, dark office, coffee cup",
            "Slacking Off": "person secretly browsing phone behind monitor, sneaky expression",
            "Layoffs": "office desk being cleared, cardboard box, dramatic lighting",
        },
    ),
    "startup": StyleGuide(
        id="startup",
        name="Startup",
        description="Early-stage company life; energetic and uncertain",
        prompt_template=PromptTemplate(
            base="vibrant startup illustration, energetic and dynamic, bold colors, creative chaos",
            by_type={
                "action": "explosive energy, startup hustle, rapid movement",
                "event": "pivotal moment, breakthrough or setback, dramatic scene",
                "resource": "startup resources, funding symbols, growth indicators",
                "character": "diverse entrepreneur portrait, passionate expression",
                "modifier": "disruptive element, game-changer symbol",
            },
            by_rarity={
                "common": "simple idea sketch, napkin drawing style",
                "uncommon": "polished concept, investor-ready visual",
                "rare": "unicorn potential, magical startup moment",
                "legendary": "IPO moment, champagne celebration, ultimate success",
            },
            negative="text, watermark, corporate boring, realistic photo, 3D render, ugly, deformed",
        ),
        visual_spec=VisualSpec(
            art_style="energetic illustration with bold strokes and vibrant gradients",
            color_palette=["#FF6B6B", "#4ECDC4", "#FFE66D", "#95E1D3", "#F38181"],
            mood="exciting, risky, innovative, youthful, disruptive",
            perspective="dynamic angles, unconventional viewpoints",
            keywords=["startup", "innovation", "disruption", "growth", "venture"],
        ),
    ),
}


class StyleGuideStore:
    """Style guides stored as <guides_dir>/<theme>.json, falling back to presets."""

    def __init__(self, guides_dir: Path):
        self.guides_dir = Path(guides_dir)

    def path_for(self, theme: str) -> Path:
        return self.guides_dir / f"{theme}.json"

    def get(self, theme: str) -> StyleGuide:
        """
        Load a theme's style guide.

        Raises:
            StyleGuideNotFoundError: No file and no preset for theme
        """
        path = self.path_for(theme)
        if path.exists():
            return StyleGuide.model_validate(json.loads(path.read_text(encoding="utf-8")))

        preset = PRESET_STYLE_GUIDES.get(theme)
        if preset is not None:
            return preset.model_copy(deep=True)

        raise StyleGuideNotFoundError(theme)

    def save(self, guide: StyleGuide) -> Path:
        path = self.path_for(guide.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(guide.to_json_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info(f"Saved style guide {guide.id} to {path}")
        return path

    @staticmethod
    def create(theme: str, name: Optional[str] = None) -> StyleGuide:
        """Blank guide for a theme without a preset."""
        return StyleGuide(id=theme, name=name or theme)
