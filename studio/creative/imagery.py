"""
Image generation for the creative flow — Gemini image model + R2 upload.

Characters are generated from the avatar description alone. Product shots
pass the selected character and the catalog product image as references.
Scene stills pass the selected product shot so the person and product stay
consistent across scenes, and are cropped to 9:16 for the video model.
"""

import logging
from typing import Optional

from .. import gemini, presets
from . import storage
from .framing import fit_vertical

logger = logging.getLogger(__name__)


class ImageGenerator:
    """Each method returns the public URL of the uploaded image."""

    async def character(self, session_id: str, avatar: dict, variation: str, position: int) -> str:
        prompt = presets.character_prompt(avatar, variation)
        data, mime = await gemini.generate_image(prompt)
        url = await storage.upload_session_asset(session_id, f"character-{position + 1}", data, mime)
        logger.info(f"Character {position + 1} for session {session_id}: {url}")
        return url

    async def product_shot(
        self,
        session_id: str,
        character_url: str,
        product: dict,
        variation: str,
        position: int,
        character_description: str = "",
    ) -> str:
        prompt = presets.product_shot_prompt(
            product.get("title", ""),
            product.get("description", ""),
            variation,
            character_description,
        )
        references = [await storage.inline_image(character_url)]
        product_image = product.get("image_url") or product.get("imageUrl")
        if product_image:
            references.append(await storage.inline_image(product_image))
        else:
            logger.warning(f"Product {product.get('id')} has no image; product shot uses the character only")

        data, mime = await gemini.generate_image(prompt, references)
        url = await storage.upload_session_asset(session_id, f"product-shot-{position + 1}", data, mime)
        logger.info(f"Product shot {position + 1} for session {session_id}: {url}")
        return url

    async def scene_image(
        self, session_id: str, scene_index: int, visuals: str, reference_url: Optional[str]
    ) -> str:
        references = [await storage.inline_image(reference_url)] if reference_url else []
        data, mime = await gemini.generate_image(presets.scene_image_prompt(visuals), references)
        data, mime = fit_vertical(data, mime)
        url = await storage.upload_session_asset(session_id, f"scene-{scene_index + 1}", data, mime)
        logger.info(f"Scene image {scene_index + 1} for session {session_id}: {url}")
        return url
