"""
Preset Library — demographic options, variation styles and prompt templates.
Users pick an audience, we inject the actual generation prompts.
"""

DEMOGRAPHIC_OPTIONS = {
    "ageGroups": ["18-24", "25-34", "35-44", "45-54", "55+"],
    "genders": ["Male", "Female", "Non-binary", "All"],
    "interests": [
        "Fitness", "Technology", "Fashion", "Health",
        "Lifestyle", "Business", "Gaming", "Travel",
    ],
    "tones": ["Professional", "Casual", "Energetic", "Luxurious", "Friendly", "Bold"],
}

# One image per entry; generated concurrently
CHARACTER_VARIATIONS = [
    "confident expression, direct eye contact",
    "friendly smile, approachable pose",
    "thoughtful expression, slight side angle",
    "energetic expression, dynamic pose",
]

PRODUCT_SHOT_VARIATIONS = [
    "Person holding the product up, showcasing it with a smile",
    "Person using or interacting with the product naturally",
    "Close-up of person with product, emphasizing the connection",
    "Dynamic action shot of person with the product",
]

SHORT_SECTIONS = {"Hook", "Call to Action"}


def scene_duration(section: str) -> float:
    """Hook and CTA are 3s beats; everything else gets 4s."""
    return 3.0 if section in SHORT_SECTIONS else 4.0


# ── Prompt templates ─────────────────────────────────────────────────────────

CHARACTER_PROMPT = """Generate a hyper-realistic portrait photo of a person for a video advertisement.

Character Profile:
{context}

Visual Description: {visual_description}

Style requirements:
- Photorealistic, high-resolution portrait photograph
- Natural lighting with soft shadows
- Professional photography quality suitable for commercial use
- Subject positioned with adequate space around for 9:16 vertical crop
- Authentic, lifelike facial features and natural expressions
- The person should look relatable and approachable
- Modern, clean background suitable for video ads
- Capture the essence of the character's personality and lifestyle"""

PRODUCT_SHOT_PROMPT = """Generate a hyper-realistic product advertisement photo combining these two reference images.

TASK: Create a natural, professional photo of the person from the first image using or holding the product from the second image.

Product Details:
- Product Name: {product_name}
- Description: {product_description}
{character_context}
Requirements:
- The person should be naturally interacting with or showcasing the product
- Maintain the exact likeness and features of the person from reference image 1
- Maintain the exact appearance of the product from reference image 2
- Photorealistic, high-resolution commercial photography quality
- Professional lighting that highlights both the person and product
- Clean, modern background suitable for social media ads
- Composition suitable for 9:16 vertical video frame
- The scene should feel authentic and relatable, not overly staged
- Natural pose and expression showing genuine interest in the product"""

SCENE_IMAGE_PROMPT = """Generate a hyper-realistic scene for a video advertisement based on this reference image.

SCENE DESCRIPTION:
{visuals}

Requirements:
- Maintain consistency with the person and product shown in the reference image
- Create a natural, professional video ad scene
- Photorealistic, high-resolution quality suitable for 9:16 vertical video
- Professional lighting that matches the scene description
- The scene should feel authentic and engaging for social media ads"""


def character_prompt(avatar: dict, variation: str) -> str:
    context = ""
    if avatar.get("name"):
        context += f"Name: {avatar['name']}. "
    if avatar.get("demographics"):
        context += f"Demographics: {avatar['demographics']}. "
    if avatar.get("backstory"):
        context += f"Background: {avatar['backstory']}. "
    return CHARACTER_PROMPT.format(
        context=context.strip(),
        visual_description=f"{avatar.get('visual_description', '')}. {variation}",
    )


def product_shot_prompt(product_name: str, product_description: str, variation: str, character: str = "") -> str:
    return PRODUCT_SHOT_PROMPT.format(
        product_name=product_name,
        product_description=f"{product_description}. Style: {variation}",
        character_context=f"\nCharacter Context: {character}\n" if character else "",
    )


def scene_image_prompt(visuals: str) -> str:
    return SCENE_IMAGE_PROMPT.format(visuals=visuals)


def scene_video_prompt(visuals: str, motion: str, dialogue: str) -> str:
    return f'{visuals}. Motion: {motion or "smooth movement"}. The character says: "{dialogue}"'


# ── Template plan (used when the LLM output can't be parsed) ─────────────────

def fallback_plan(product: dict, audience: dict, product_breakdown: str = "") -> dict:
    """Five-scene template plan built from the product and audience alone."""
    title = product.get("title") or product.get("name") or "the product"
    description = product.get("description") or ""
    age_group = audience.get("age_group") or "25-34"
    gender = audience.get("gender") or "All"
    interests = audience.get("interests") or []
    tone = audience.get("tone") or "Friendly"
    first_interest = interests[0] if interests else "lifestyle"
    person = gender if gender != "All" else "Person"

    character = (
        f"A {gender.lower() if gender != 'All' else 'person'} aged {age_group}, "
        f"passionate about {' and '.join(interests) or 'everyday life'}, with a {tone.lower()} "
        f"and authentic personality. They have a natural, relatable presence that connects "
        f"with their audience. Hyper-realistic portrait, positioned with space around for "
        f"9:16 vertical crop."
    )

    scenes = [
        {
            "id": 1,
            "title": "Hook",
            "prompt": (
                f"Opening shot: {person} in their {age_group}s looking directly at camera with an "
                f"intrigued expression, about to share something exciting. {tone} lighting and modern "
                f"setting. Hyper-realistic, positioned for 9:16 crop with headroom."
            ),
            "dialogue": "Wait, you NEED to see this...",
            "motion": "Slow zoom-in on face",
            "transitions": "Smooth cut",
            "duration": 3,
        },
        {
            "id": 2,
            "title": "Problem",
            "prompt": (
                f"The creator shows a common frustration that {age_group} year olds face related to "
                f"{interests[0] if interests else 'daily life'}. Authentic, relatable moment. Medium "
                f"shot with room for vertical crop."
            ),
            "dialogue": "I used to struggle with this all the time...",
            "motion": "Slight pan left to right",
            "transitions": "Quick cut",
            "duration": 4,
        },
        {
            "id": 3,
            "title": "Solution",
            "prompt": (
                f"Reveal of {title}. The creator's face lights up as they hold the product. Clean "
                f"product shot with {tone.lower()} presentation style. Full body or 3/4 shot for "
                f"9:16 framing."
            ),
            "dialogue": f"Then I found the {title}!",
            "motion": "Dynamic reveal with zoom",
            "transitions": "Fade transition",
            "duration": 4,
        },
        {
            "id": 4,
            "title": "Testimonial/Proof",
            "prompt": (
                f"The creator demonstrates {title} in action. Close-up shots of key features "
                f"interspersed with reaction shots. Natural, unscripted feel showing genuine "
                f"appreciation."
            ),
            "dialogue": "Look at how easy this is... and the quality is incredible!",
            "motion": "Close-up shots with smooth transitions",
            "transitions": "Quick cuts between angles",
            "duration": 5,
        },
        {
            "id": 5,
            "title": "Call to Action",
            "prompt": (
                f"The creator enthusiastically recommends {title}. Direct eye contact, genuine "
                f"smile, and clear call to action. Product visible in frame. Centered composition "
                f"for 9:16."
            ),
            "dialogue": "Link in bio - trust me, you won't regret it!",
            "motion": "Hold on face, slight zoom",
            "transitions": "Fade to end card",
            "duration": 3,
        },
    ]

    return {
        "product_prompt": (
            f"Introducing {title} - the perfect companion for {first_interest} enthusiasts. "
            f"{description[:150]}"
        ).strip(),
        "product_breakdown": product_breakdown,
        "character_prompt": character,
        "scenes": scenes,
        "plan": None,
    }
