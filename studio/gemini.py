"""
Gemini integration for ad planning and image generation.

- Planning: Gemini text model via REST — product breakdown + JSON production plan
- Image Generation: Gemini image model via REST — characters, product shots, scene stills
"""

import os
import json
import base64
import logging
from typing import Optional

import httpx

from . import presets

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
GEMINI_TEXT_MODEL = os.environ.get("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
GEMINI_IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _api_url(model: str) -> str:
    return f"{API_BASE}/models/{model}:generateContent"


def _parse_json_response(text: str) -> dict:
    """Parse JSON from Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            return json.loads(json_block.strip())
        raise ValueError(f"Gemini returned invalid JSON: {text[:200]}")


def _build_body(contents: list, config: Optional[dict]) -> dict:
    body: dict = {"contents": contents}
    if config:
        body["generationConfig"] = config
    return body


def _generate_content(model: str, contents: list, config: dict | None = None) -> dict:
    """Call Gemini generateContent REST endpoint."""
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY not set")

    resp = httpx.post(
        _api_url(model),
        params={"key": GEMINI_API_KEY},
        json=_build_body(contents, config),
        timeout=120,
    )
    if resp.status_code != 200:
        raise RuntimeError(f"Gemini API error {resp.status_code}: {resp.text[:500]}")
    return resp.json()


def _first_text(result: dict) -> str:
    candidates = result.get("candidates") or []
    if not candidates:
        raise RuntimeError("Gemini returned no candidates")
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts)


def generate_text(prompt: str, system_prompt: str = "") -> str:
    contents = []
    if system_prompt:
        contents.append({"role": "user", "parts": [{"text": system_prompt}]})
        contents.append({"role": "model", "parts": [{"text": "Understood. I will follow these instructions."}]})
    contents.append({"role": "user", "parts": [{"text": prompt}]})

    logger.info(f"Gemini text request (model: {GEMINI_TEXT_MODEL})")
    return _first_text(_generate_content(GEMINI_TEXT_MODEL, contents))


# =========================================================================
# 1. Product Breakdown — feature/benefit analysis used to ground the plan
# =========================================================================

BREAKDOWN_SYSTEM_PROMPT = (
    "You are an expert e-commerce product analyst. Take the following product details and "
    "break them down into a structured analysis for creating video ads. Focus on extracting "
    "key elements that can be used to craft compelling ads."
)

BREAKDOWN_PROMPT = """Product Name: {title}

Description: {description}

Price: ${price}

Target Audience Hints: {age_group} {gender}, interested in {interests}

Output in this exact format:
- **Key Features**: Bullet list of 5-7 main features.
- **Benefits**: For each feature, explain the user benefit in 1-2 sentences.
- **Pain Points Solved**: 3-5 problems this product addresses.
- **Unique Selling Points (USPs)**: What makes it stand out from competitors.
- **Ideal Customer Profile**: Demographics (age, gender, lifestyle), needs, and motivations.
- **Emotional Hooks**: 3-5 emotional appeals (e.g., convenience, status, relief).
- **Call to Action Ideas**: 2-3 strong CTAs for ads (e.g., "Buy now and transform your workouts!").

Keep the response concise, factual, and ad-focused."""


def generate_product_breakdown(product: dict, audience: dict) -> str:
    """Returns "" when Gemini fails; the plan can still be built without it."""
    gender = audience.get("gender") or ""
    prompt = BREAKDOWN_PROMPT.format(
        title=product.get("title", ""),
        description=product.get("description", ""),
        price=product.get("price", ""),
        age_group=audience.get("age_group") or "",
        gender=gender if gender != "All" else "",
        interests=", ".join(audience.get("interests") or []),
    )
    try:
        return generate_text(prompt, BREAKDOWN_SYSTEM_PROMPT).strip()
    except Exception as e:
        logger.error(f"Product breakdown failed: {e}")
        return ""


# =========================================================================
# 2. Production Plan — avatar, script and scene breakdown as JSON
# =========================================================================

PLAN_SYSTEM_PROMPT = (
    "You are a creative video ad automation expert. Using the product breakdown below, "
    "automatically generate a customer avatar, a complete 30-60 second video ad script, "
    "ready-to-use prompts for generating consistent, hyper-realistic scenes, and a detailed "
    "breakdown of how these scenes, along with dialogue and motion, should be assembled into a "
    "compelling video ad. The scenes should map directly to the script sections for a cohesive "
    "ad, the human faces should look as authentic and lifelike as possible, and the primary "
    "subject in all generated images should be positioned so they are not too close, allowing "
    "for a 9:16 crop later without losing key details.\n\n"
    "Always respond in valid JSON format with no markdown formatting or code blocks."
)

PLAN_PROMPT = """Based on this product breakdown, generate a complete video ad production plan:

PRODUCT: {title}
PRICE: ${price}

PRODUCT BREAKDOWN:
{breakdown}

TARGET AUDIENCE:
- Age Group: {age_group}
- Gender: {gender}
- Interests: {interests}
- Content Tone: {tone}

Output in this exact JSON format:
{{
  "product_name": "{title}",
  "ad_format": "Video Ad (30-60 Seconds)",
  "target_platform": "Social Media (9:16 Vertical Crop)",
  "customer_avatar": {{
    "name": "[Name matching the target demographic]",
    "demographics": "[Detailed description of demographics]",
    "backstory": "[2-3 sentence summary of daily life, challenge, and product fit]",
    "visual_description": "[Detailed description for AI image generation, focusing on hyper-realism and framing for crop]"
  }},
  "video_ad_script": {{
    "overall_tone": "[e.g., Energetic, relatable, persuasive - matching {tone}]"
  }},
  "video_production_breakdown": [
    {{
      "scene": 1,
      "section": "Hook",
      "visuals": "[Detailed image generation prompt for the scene. Primary subject not too close for 9:16 crop.]",
      "dialogue": "[Attention-grabbing opening line]",
      "motion": "[Camera movement instructions (e.g., slow zoom-in, pan, hold)]",
      "transitions": "[Transition type (e.g., smooth cut, fade, wipe)]"
    }},
    {{"scene": 2, "section": "Problem", "visuals": "...", "dialogue": "...", "motion": "...", "transitions": "..."}},
    {{"scene": 3, "section": "Solution", "visuals": "...", "dialogue": "...", "motion": "...", "transitions": "..."}},
    {{"scene": 4, "section": "Testimonial/Proof", "visuals": "...", "dialogue": "...", "motion": "...", "transitions": "..."}},
    {{"scene": 5, "section": "Call to Action", "visuals": "...", "dialogue": "...", "motion": "...", "transitions": "..."}}
  ]
}}

Respond ONLY with the JSON object."""


def plan_from_response(text: str, product_breakdown: str = "") -> dict:
    """
    Turn the raw LLM text into the plan dict the session service stores.

    Raises ValueError when the text isn't a usable plan.
    """
    plan = _parse_json_response(text)
    breakdown = plan.get("video_production_breakdown")
    if not isinstance(breakdown, list) or not breakdown:
        raise ValueError("Production plan has no scenes")

    avatar = plan.get("customer_avatar") or {}
    script = plan.get("video_ad_script") or {}
    scenes = []
    for position, entry in enumerate(breakdown):
        section = entry.get("section") or f"Scene {position + 1}"
        scenes.append({
            "id": entry.get("scene") or position + 1,
            "title": section,
            "prompt": entry.get("visuals") or "",
            "dialogue": entry.get("dialogue") or "",
            "motion": entry.get("motion") or "",
            "transitions": entry.get("transitions") or "",
            "duration": presets.scene_duration(section),
        })

    return {
        "product_prompt": (
            f"{plan.get('product_name', '')} - A {script.get('overall_tone', '')} video ad "
            f"targeting {avatar.get('demographics', '')}"
        ),
        "product_breakdown": product_breakdown,
        "character_prompt": avatar.get("visual_description") or "",
        "scenes": scenes,
        "plan": plan,
    }


def generate_ad_plan(product: dict, audience: dict) -> dict:
    """
    Product breakdown → production plan. Falls back to the template plan
    when the LLM call fails or its output can't be parsed.
    """
    breakdown = generate_product_breakdown(product, audience)
    prompt = PLAN_PROMPT.format(
        title=product.get("title", ""),
        price=product.get("price", ""),
        breakdown=breakdown,
        age_group=audience.get("age_group") or "",
        gender=audience.get("gender") or "",
        interests=", ".join(audience.get("interests") or []),
        tone=audience.get("tone") or "",
    )

    try:
        text = generate_text(prompt, PLAN_SYSTEM_PROMPT)
        return plan_from_response(text, breakdown)
    except Exception as e:
        logger.error(f"Production plan failed, using template plan: {e}")
        return presets.fallback_plan(product, audience, breakdown)


# =========================================================================
# 3. Image Generation — returns raw bytes + mime type
# =========================================================================

async def generate_image(prompt: str, reference_parts: Optional[list] = None) -> tuple[bytes, str]:
    """
    Generate one image with the Gemini image model.

    reference_parts are inlineData parts (see storage.inline_image) placed
    after the text prompt, in the order the prompt refers to them.
    """
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY not set")

    parts = [{"text": prompt}, *(reference_parts or [])]
    body = _build_body(
        [{"parts": parts}],
        {"responseModalities": ["TEXT", "IMAGE"], "temperature": 0.7},
    )

    async with httpx.AsyncClient(timeout=120) as client:
        response = await client.post(
            _api_url(GEMINI_IMAGE_MODEL),
            params={"key": GEMINI_API_KEY},
            json=body,
        )
        response.raise_for_status()
        result = response.json()

    candidates = result.get("candidates", [])
    if not candidates:
        raise RuntimeError("Gemini returned no candidates for image generation.")

    for part in candidates[0].get("content", {}).get("parts", []):
        if "inlineData" in part:
            data = base64.b64decode(part["inlineData"]["data"])
            return data, part["inlineData"].get("mimeType", "image/png")

    raise RuntimeError("Gemini response contained no image data.")
