SCENE_PROMPT_TEMPLATE = """Create a colorful, friendly children's book illustration for the scene: '{scene_text}'.
The main character, {character_name}, should be featured and match the cartoon style of the provided reference image.
Keep {character_name}'s face, hair, clothing and proportions consistent with the reference image.
Show {character_name} actively doing what the scene describes (moving, looking, interacting), not standing and posing.
DO NOT include any text, letters, speech bubbles or captions in the image.
Use a soft, calm palette and a clean, uncluttered background suitable for autistic learners.
The image should be square format (1024x1024) with the main character prominently featured."""


def build_scene_prompt(scene_text: str, character_name: str) -> str:
    name = (character_name or "").strip() or "a child"
    return SCENE_PROMPT_TEMPLATE.format(scene_text=scene_text.strip(), character_name=name)
