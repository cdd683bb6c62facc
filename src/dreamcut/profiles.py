"""Creative profiles: keyword/platform/intent driven presets for creative options."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class CreativeProfile:
    id: str
    name: str
    goal: str
    keywords: Tuple[str, ...]
    platforms: Tuple[str, ...]
    intents: Tuple[str, ...]
    opening_strategy: str
    visual_treatment: str
    pacing: str
    transition_style: str
    engagement: str
    enhancement_needs: Tuple[str, ...] = field(default_factory=tuple)
    priority: int = 50


EDUCATIONAL_EXPLAINER = CreativeProfile(
    id="educational_explainer",
    name="Educational Explainer",
    goal="Clear, educational content that maximizes learning impact",
    keywords=("explain", "teach", "learn", "tutorial", "how to", "guide", "education", "course", "lesson"),
    platforms=("youtube", "linkedin"),
    intents=("image", "video", "mix"),
    opening_strategy="State the question the piece answers in the first seconds",
    visual_treatment="Clean typography, high contrast, supporting diagrams",
    pacing="steady",
    transition_style="fade",
    engagement="medium",
    enhancement_needs=("narration", "subtitles"),
    priority=90,
)

PRODUCT_SHOWCASE = CreativeProfile(
    id="product_showcase",
    name="Product Showcase",
    goal="Put the product front and center with a clear call to action",
    keywords=("product", "launch", "brand", "logo", "ad", "advert", "commercial", "promo", "sale", "shop"),
    platforms=("instagram", "facebook", "youtube", "web"),
    intents=("image", "video", "mix"),
    opening_strategy="Hero reveal of the product on a clean background",
    visual_treatment="Studio lighting, brand colors, crisp product close-ups",
    pacing="punchy",
    transition_style="whip-pan",
    engagement="high",
    enhancement_needs=("background-cleanup", "color-grade"),
    priority=85,
)

SOCIAL_SHORT = CreativeProfile(
    id="social_short",
    name="Social Short-Form",
    goal="Stop the scroll within the first second and hold attention",
    keywords=("tiktok", "reel", "reels", "shorts", "viral", "trend", "hook", "story"),
    platforms=("tiktok", "instagram", "shorts"),
    intents=("video", "mix"),
    opening_strategy="Pattern-interrupt hook in the first second",
    visual_treatment="Vertical framing, bold captions, high saturation",
    pacing="fast",
    transition_style="jump-cut",
    engagement="high",
    enhancement_needs=("captions", "reframe-vertical"),
    priority=80,
)

CINEMATIC_STORY = CreativeProfile(
    id="cinematic_story",
    name="Cinematic Story",
    goal="Emotional narrative with film-like craft",
    keywords=("cinematic", "film", "story", "emotional", "documentary", "trailer", "epic", "journey"),
    platforms=("youtube", "vimeo"),
    intents=("video", "mix"),
    opening_strategy="Slow establishing shot that sets mood before the subject",
    visual_treatment="Letterboxed frames, filmic grade, shallow depth of field",
    pacing="slow-build",
    transition_style="cross-dissolve",
    engagement="medium",
    enhancement_needs=("color-grade", "upscale"),
    priority=70,
)

MUSIC_VISUALIZER = CreativeProfile(
    id="music_visualizer",
    name="Music Visualizer",
    goal="Visuals locked to the rhythm of the soundtrack",
    keywords=("music", "song", "beat", "track", "album", "lyric", "dj", "podcast"),
    platforms=("youtube", "spotify", "tiktok"),
    intents=("audio", "video", "mix"),
    opening_strategy="Open on the beat drop with the strongest visual",
    visual_treatment="Beat-synced motion graphics over supplied imagery",
    pacing="rhythmic",
    transition_style="beat-cut",
    engagement="high",
    enhancement_needs=("beat-detection",),
    priority=65,
)

ANIME_MODE = CreativeProfile(
    id="anime_mode",
    name="Anime Mode",
    goal="High-energy, stylized content with anime aesthetics",
    keywords=("anime", "manga", "kawaii", "chibi", "shounen", "shoujo", "cartoon"),
    platforms=("tiktok", "instagram", "youtube"),
    intents=("image", "video", "mix"),
    opening_strategy="Dramatic character pose with speed lines",
    visual_treatment="Cel-shaded stylization, vibrant palette, impact frames",
    pacing="fast",
    transition_style="flash",
    engagement="high",
    enhancement_needs=("style-transfer",),
    priority=60,
)

BALANCED_EDIT = CreativeProfile(
    id="balanced_edit",
    name="Balanced Edit",
    goal="Faithful, well-paced use of the supplied material",
    keywords=(),
    platforms=(),
    intents=("image", "video", "audio", "mix"),
    opening_strategy="Lead with the strongest supplied asset",
    visual_treatment="Natural grade that respects the source material",
    pacing="moderate",
    transition_style="cut",
    engagement="medium",
    priority=10,
)

PROFILES: Tuple[CreativeProfile, ...] = (
    EDUCATIONAL_EXPLAINER,
    PRODUCT_SHOWCASE,
    SOCIAL_SHORT,
    CINEMATIC_STORY,
    MUSIC_VISUALIZER,
    ANIME_MODE,
)


def _keyword_hits(text: str, keywords: Sequence[str]) -> int:
    hits = 0
    for keyword in keywords:
        if re.search(rf"\b{re.escape(keyword)}\b", text):
            hits += 1
    return hits


def score_profile(profile: CreativeProfile, *, query: str, intent: str, platform: Optional[str]) -> float:
    text = query.lower()
    score = 3.0 * _keyword_hits(text, profile.keywords)
    if platform and platform.lower() in profile.platforms:
        score += 2.0
    if intent in profile.intents:
        score += 1.0
    if score <= 1.0:
        # intent alone is not evidence of a profile
        return 0.0
    return score + profile.priority / 100.0


def detect_profiles(
    *,
    query: str,
    intent: str,
    platform: Optional[str] = None,
    limit: int = 3,
    profiles: Sequence[CreativeProfile] = PROFILES,
) -> List[CreativeProfile]:
    """Return matching profiles best-first, always ending with the balanced edit."""

    scored = [(score_profile(p, query=query, intent=intent, platform=platform), p) for p in profiles]
    ranked = [p for score, p in sorted(scored, key=lambda item: (-item[0], -item[1].priority)) if score > 0]
    selected = ranked[: max(limit - 1, 0)]
    selected.append(BALANCED_EDIT)
    return selected


def get_profile(profile_id: str) -> Optional[CreativeProfile]:
    for profile in (*PROFILES, BALANCED_EDIT):
        if profile.id == profile_id:
            return profile
    return None


__all__ = [
    "CreativeProfile",
    "PROFILES",
    "BALANCED_EDIT",
    "detect_profiles",
    "score_profile",
    "get_profile",
]
