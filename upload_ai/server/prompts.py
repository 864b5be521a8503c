"""Built-in prompt templates served by GET /prompts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Prompt:
    id: str
    title: str
    template: str


YOUTUBE_TITLE = Prompt(
    id="youtube-title",
    title="YouTube title",
    template="""Your role is to generate three titles for a YouTube video.

Below you will receive a transcription of this video; use it to generate the titles.

The titles must have at most 60 characters.
The titles must be catchy and attractive to maximize clicks.

Return ONLY the three titles as a list, like the example below:
'''
- Title 1
- Title 2
- Title 3
'''

Transcription:
'''
{transcription}
'''""",
)

YOUTUBE_DESCRIPTION = Prompt(
    id="youtube-description",
    title="YouTube description",
    template="""Your role is to generate a succinct description for a YouTube video.

Below you will receive a transcription of this video; use it to generate the description.

The description must have at most 80 words, written in the first person, and
contain the main points of the video.

Use attention-grabbing words that draw the reader in.

Add a list of lowercase hashtags with 3 to 10 keywords from the video at the end.

The answer must follow this format:
'''
Description.

#hashtag1 #hashtag2 #hashtag3 ...
'''

Transcription:
'''
{transcription}
'''""",
)

DEFAULT_PROMPTS: List[Prompt] = [YOUTUBE_TITLE, YOUTUBE_DESCRIPTION]
