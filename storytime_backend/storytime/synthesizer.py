"""
Template story generator used when no AI story is available.

Everything here is deterministic: the same prompt, scene count and age
group always produce the same StoryDraft.
"""
import logging
import re
from typing import Callable, Dict, List, Optional

from .models import Character, DialogueLine, SceneDraft, StoryDraft

logger = logging.getLogger(__name__)

MIN_SCENES = 3
TITLE_LIMIT = 60
DEFAULT_NAME = "Hero"
PERSONALITY = "brave, curious, and kind"

THEME_KEYWORDS: Dict[str, List[str]] = {
    "adventure": ["adventure", "journey", "explore", "quest", "travel", "treasure", "race", "rescue", "voyage"],
    "friendship": ["friend", "together", "share", "sharing", "help", "kind", "team"],
    "learning": ["learn", "school", "lesson", "teach", "count", "read", "discover", "science"],
    "magic": ["magic", "wizard", "witch", "fairy", "spell", "dragon", "unicorn", "enchanted", "potion"],
    "challenge": ["problem", "challenge", "lost", "scared", "afraid", "fear", "trouble", "solve", "overcome"],
}

ROLE_WORDS = (
    "bear|bunny|rabbit|cat|kitten|dog|puppy|fox|owl|mouse|duck|frog|lion|tiger|elephant|"
    "monkey|penguin|turtle|dragon|unicorn|dinosaur|robot|wizard|fairy|princess|prince|"
    "knight|pirate|astronaut|girl|boy|bird|fish|squirrel|hedgehog|giraffe|panda"
)

# one run of letters in any script
WORD = r"[^\W\d_]+"

_TWO_PATTERN = re.compile(r"\btwo\s+(" + WORD + r")(?:\s+and\s+(" + WORD + r"))?", re.IGNORECASE)

# Order matters: each pattern contributes at most one name.
_ROLE_PATTERNS = [
    re.compile(r"\bnamed\s+(" + WORD + ")", re.IGNORECASE),
    re.compile(r"\b(?:a|an|the)\s+(?:" + WORD + r"\s+)?(" + ROLE_WORDS + r")s?\b", re.IGNORECASE),
    re.compile(r"\b(" + WORD + r")\s+(?:who|that|goes|went|wants|loves|learns|finds|meets)\b", re.IGNORECASE),
    re.compile(r"\bstory\s+(?:of|about)\s+(?:a\s+|an\s+|the\s+)?(" + WORD + ")", re.IGNORECASE),
]

TEMPLATES: Dict[str, Dict[str, Callable[[str], str]]] = {
    "toddler": {
        "intro": lambda names: f"Once upon a time, there was little {names} who loved to explore.",
        "middle": lambda names: f"{names} discovered something wonderful and made new friends.",
        "end": lambda names: f"Everyone was happy and {names} learned something new!",
    },
    "preschool": {
        "intro": lambda names: f"In a magical place, {names} began an exciting adventure.",
        "middle": lambda names: f"{names} faced a challenge but didn't give up.",
        "end": lambda names: f"With help from friends, {names} succeeded and everyone celebrated!",
    },
    "elementary": {
        "intro": lambda names: f"{names} lived in an interesting world and had a problem to solve.",
        "middle": lambda names: f"Through creativity and determination, {names} worked on a solution.",
        "end": lambda names: f"{names} achieved their goal and learned an important lesson.",
    },
}

OPENING_LINE = "Let's go on an adventure!"
EXCLAMATIONS = ["I can do this!", "Look at that!", "We're almost there!", "What a wonderful day!"]
CLOSING_LINE = "What an adventure!"


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def _singular(word: str) -> str:
    w = word.lower()
    if len(w) > 3 and w.endswith("ies"):
        return w[:-3] + "y"
    if len(w) > 2 and w.endswith("s") and not w.endswith("ss"):
        return w[:-1]
    return w


def _add_name(names: List[str], word: str) -> None:
    name = _capitalize(word)
    if name and name not in names:
        names.append(name)


def _names_from_two(prompt: str) -> List[str]:
    m = _TWO_PATTERN.search(prompt)
    if not m:
        return []
    first, second = m.group(1), m.group(2)
    if second and _capitalize(first) != _capitalize(second):
        return [_capitalize(first), _capitalize(second)]
    base = _capitalize(_singular(first))
    return [f"{base} One", f"{base} Two"]


def _names_from_roles(prompt: str) -> List[str]:
    names: List[str] = []
    for pattern in _ROLE_PATTERNS:
        m = pattern.search(prompt)
        if m and len(m.group(1)) > 2:
            _add_name(names, m.group(1))
    return names


def _name_from_first_long_word(prompt: str) -> Optional[str]:
    for token in prompt.split():
        if len(token) > 4:
            letters = "".join(ch for ch in token if ch.isalpha())
            return _capitalize(letters) if letters else None
    return None


def extract_character_names(prompt: str) -> List[str]:
    prompt = prompt or ""

    names = _names_from_two(prompt)
    if names:
        return names

    names = _names_from_roles(prompt)
    if names:
        return names

    name = _name_from_first_long_word(prompt)
    if name:
        return [name]

    return [DEFAULT_NAME]


def detect_themes(prompt: str) -> Dict[str, bool]:
    text = (prompt or "").lower()
    return {theme: any(k in text for k in keywords) for theme, keywords in THEME_KEYWORDS.items()}


def join_names(names: List[str]) -> str:
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def _title(prompt: str, names_text: str) -> str:
    text = (prompt or "").strip()
    if not text:
        return f"The Adventure of {names_text}"
    if len(text) > TITLE_LIMIT:
        return text[: TITLE_LIMIT - 3].rstrip() + "..."
    return text


def _variations(themes: Dict[str, bool], names_text: str) -> List[Dict[str, str]]:
    if themes["magic"]:
        discovery_setting = "A hidden glade that glows with gentle magic"
    elif themes["learning"]:
        discovery_setting = "A cozy corner full of books, maps and clues"
    else:
        discovery_setting = "A secret garden behind an old wooden gate"

    return [
        {
            "title": "The Journey",
            "setting": "A winding trail through green hills and tall forests"
            if themes["adventure"] else "A quiet path that leads away from home",
            "action": f"{names_text} set out on a journey to see what lies ahead.",
        },
        {
            "title": "New Friends",
            "setting": "A cheerful meadow where new friends like to play"
            if themes["friendship"] else "A busy little village square",
            "action": f"{names_text} met new friends along the way.",
        },
        {
            "title": "The Challenge",
            "setting": "A tricky place where a big problem is waiting"
            if themes["challenge"] else "A tall hill that looks very hard to climb",
            "action": f"{names_text} faced a challenge and kept on trying.",
        },
        {
            "title": "The Discovery",
            "setting": discovery_setting,
            "action": f"{names_text} discovered something surprising.",
        },
    ]


def synthesize(prompt: str, scene_count: int, age_group: str) -> StoryDraft:
    """Build a playable story from the prompt alone.

    Never raises: blank prompts fall back to a generic hero, unknown age
    groups use the preschool template and scene counts below three are
    raised to three.
    """
    if scene_count < MIN_SCENES:
        logger.warning(f"Requested {scene_count} scenes, using the minimum of {MIN_SCENES}")
        scene_count = MIN_SCENES
    template = TEMPLATES.get(age_group) or TEMPLATES["preschool"]

    names = extract_character_names(prompt)
    themes = detect_themes(prompt)
    names_text = join_names(names)
    logger.info(f"Template story: characters={names} themes={[t for t, on in themes.items() if on]}")

    characters = [
        Character(
            name=name,
            description=(
                f"{name} is a {'friendly' if themes['friendship'] else 'brave'} character "
                f"who loves {'adventures' if themes['adventure'] else 'making friends'}."
            ),
            personality=PERSONALITY,
        )
        for name in names
    ]

    scenes = [
        SceneDraft(
            number=1,
            title="The Beginning",
            setting="An enchanted land full of sparkling wonders"
            if themes["magic"] else "A peaceful, sunny place where every story begins",
            narration=template["intro"](names_text),
            dialogue=[DialogueLine(character=name, text=OPENING_LINE) for name in names],
            actions=[f"{names_text} looked around with curious eyes."],
        )
    ]

    variations = _variations(themes, names_text)
    for i in range(scene_count - 2):
        variation = variations[i % len(variations)]
        scenes.append(
            SceneDraft(
                number=i + 2,
                title=variation["title"],
                setting=variation["setting"],
                narration=template["middle"](names_text) if i == 0 else variation["action"],
                dialogue=[DialogueLine(character=names[i % len(names)], text=EXCLAMATIONS[i % len(EXCLAMATIONS)])],
                actions=[variation["action"]],
            )
        )

    scenes.append(
        SceneDraft(
            number=scene_count,
            title="The Happy Ending",
            setting="A bright, colorful celebration under a rainbow sky",
            narration=template["end"](names_text),
            dialogue=[DialogueLine(character=names[0], text=CLOSING_LINE)],
            actions=[f"{names_text} celebrated happily together."],
        )
    )

    return StoryDraft(title=_title(prompt, names_text), characters=characters, scenes=scenes)
