from typing import List


def split_scenes(story_text: str) -> List[str]:
    """Split a story into paragraph scenes on blank lines, dropping empty ones.

    An empty list means there is nothing to illustrate; callers must reject it.
    """
    if not story_text:
        return []
    text = story_text.replace("\r\n", "\n")
    return [s.strip() for s in text.split("\n\n") if s.strip()]
