"""Deterministic substitutes used when an outbound call fails.

Everything here is pure: the same inputs always give the same value, so a
banner built entirely from fallbacks is still complete and renderable.
"""

from __future__ import annotations

from urllib.parse import quote

from spotlight.models import BannerContent, ImagePayload

FALLBACK_SOURCE = "Fallback"
SVG_CONTENT_TYPE = "image/svg+xml"
PLACEHOLDER_LABEL = "Professional Development"

FALLBACK_TOPIC_SUMMARY = """Current trending topics in tech:
1. AI Integration in Workplace - Companies are rapidly adopting AI tools for productivity
2. Remote Work Technologies - New collaboration tools and virtual office solutions
3. Cybersecurity Awareness - Growing focus on data protection and privacy"""

FALLBACK_CONTENT = BannerContent(
    title="🚀 Boost Your Career Today!",
    description=(
        "Discover trending skills and opportunities in today's dynamic professional landscape"
    ),
    body=(
        "Welcome to another day of professional growth! Stay ahead of the curve by "
        "developing relevant skills and connecting with industry peers. Your career "
        "journey continues with every new challenge and opportunity."
    ),
    image_search_term="professional development technology workspace",
)

FALLBACK_ANALYSIS_SUGGESTIONS = (
    "Consider updating your profile summary to highlight key achievements",
    "Add more specific skills to your LinkedIn profile",
    "Connect with colleagues in your industry",
    "Share content related to your expertise",
    "Request recommendations from previous colleagues",
)

BANNER_GRAPHIC_SVG = """<svg width="1200" height="300" xmlns="http://www.w3.org/2000/svg">
  <defs>
    <linearGradient id="grad1" x1="0%" y1="0%" x2="100%" y2="100%">
      <stop offset="0%" style="stop-color:#667eea;stop-opacity:1" />
      <stop offset="100%" style="stop-color:#764ba2;stop-opacity:1" />
    </linearGradient>
  </defs>
  <rect width="100%" height="100%" fill="url(#grad1)"/>
  <text x="50%" y="50%" font-family="Arial, sans-serif" font-size="48" font-weight="bold"
        text-anchor="middle" dy=".3em" fill="white">SkillSync AI</text>
  <text x="50%" y="70%" font-family="Arial, sans-serif" font-size="24"
        text-anchor="middle" dy=".3em" fill="rgba(255,255,255,0.9)">Professional Development Platform</text>
</svg>
"""


def fallback_topic_summary() -> str:
    return FALLBACK_TOPIC_SUMMARY


def fallback_banner_content() -> BannerContent:
    return FALLBACK_CONTENT.model_copy()


def placeholder_image_url(
    label: str = PLACEHOLDER_LABEL,
    *,
    width: int = 1200,
    height: int = 300,
    background: str = "667eea",
    foreground: str = "ffffff",
) -> str:
    return (
        f"https://via.placeholder.com/{width}x{height}/{background}/{foreground}"
        f"?text={quote(label, safe='')}"
    )


def fallback_banner_graphic() -> ImagePayload:
    return ImagePayload(data=BANNER_GRAPHIC_SVG.encode("utf-8"), content_type=SVG_CONTENT_TYPE)


def fallback_analysis_suggestions() -> list[str]:
    return list(FALLBACK_ANALYSIS_SUGGESTIONS)
