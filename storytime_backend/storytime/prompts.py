SYSTEM_PROMPT = """You are a creative children's story writer. Create engaging, age-appropriate stories with clear structure.
Always return your response as valid JSON with this exact structure:
{schema}"""


STORY_SCHEMA = r"""{
  "title": "Story Title",
  "characters": [
    {
      "name": "Character Name",
      "description": "Physical description",
      "personality": "personality traits"
    }
  ],
  "scenes": [
    {
      "number": 1,
      "title": "Scene Title",
      "setting": "Description of location",
      "narration": "Narrative text for this scene",
      "dialogue": [
        {
          "character": "Character Name",
          "text": "What they say"
        }
      ],
      "actions": ["Action descriptions"]
    }
  ]
}"""


USER_PROMPT_TEMPLATE = """Create a {age_group} children's story in {style} style about: {prompt}

Requirements:
- Include exactly {scene_count} scenes, numbered 1 to {scene_count}
- Each scene should have narration, dialogue, and actions
- Create 2-4 memorable characters with UNIQUE, DISTINCT names (no duplicates)
- Each character must have a detailed physical description suitable for {style} style artwork
- Make it engaging and age-appropriate for {age_group} children
- Include a clear beginning, middle, and end
- Target duration: {duration}

IMPORTANT: Every character must have a completely unique name. No two characters should share the same name.

Return only valid JSON following the specified structure."""


# Shorter instruction for text2text models such as Flan-T5
HF_INSTRUCTION_TEMPLATE = """Create a {age_group} children's story in {style} style about: {prompt}.
Include {scene_count} scenes with characters, settings, and dialogue. Make it simple and engaging."""
