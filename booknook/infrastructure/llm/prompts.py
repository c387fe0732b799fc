"""Prompt templates for the content-analysis classifier."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    """System + user prompt pair with ``str.format`` placeholders."""

    name: str
    system: str
    user: str
    version: str = "1"

    def render(self, **kwargs) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system.format(**kwargs)},
            {"role": "user", "content": self.user.format(**kwargs)},
        ]


CONTENT_IDENTIFICATION_PROMPT = PromptTemplate(
    name="content_identification",
    system=(
        "You are BookNook's cataloguing assistant. "
        "Given the opening text of an e-book, identify the book. "
        "Respond ONLY with a valid JSON object with the keys "
        "'title', 'author', 'description', 'tags' (a list of short lowercase genre tags) "
        "and 'confidence' (a number between 0 and 1 saying how sure you are). "
        "If you do not recognise the book, use a confidence below 0.5. "
        "Do not include any explanation or markdown fencing. JSON only."
    ),
    user=(
        "Identify the book this text comes from:\n\n"
        "{text}\n\n"
        'Respond with JSON only, e.g. {{"title": "Dune", "author": "Frank Herbert", '
        '"description": "Desert planet epic.", "tags": ["science fiction"], "confidence": 0.9}}'
    ),
)
