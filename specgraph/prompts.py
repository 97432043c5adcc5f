"""Prompt templates shipped in specgraph/templates/*.md.

A template file holds a system part and a user part::

    # System Prompt: <title>
    ...
    ---

    # User Prompt:
    ...

``{name}`` placeholders are filled by render(); unknown names are left as is.
"""

import os
import re
from dataclasses import dataclass

from specgraph.errors import SpecGraphError
from specgraph.model import Message

PROMPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
USER_MARKER = "---\n\n# User Prompt:"
RE_PLACEHOLDER = re.compile(r'\{([a-z_]+)\}')
RE_SYSTEM_TITLE = re.compile(r'^# System Prompt:.*\n')


@dataclass
class Prompt:
    system: str
    user: str


def parse_prompt(text, name="prompt"):
    parts = text.replace("\r\n", "\n").split(USER_MARKER)
    if len(parts) != 2:
        raise SpecGraphError(f"Invalid prompt file format: {name}")
    system = RE_SYSTEM_TITLE.sub("", parts[0], count=1).strip()
    user = parts[1].split("\n", 1)[1].strip() if "\n" in parts[1] else ""
    return Prompt(system=system, user=user)


def load_prompt(name, prompts_dir=PROMPTS_DIR):
    path = os.path.join(prompts_dir, f"{name}.md")
    if not os.path.exists(path):
        raise SpecGraphError(f"Unknown prompt: {name}")
    with open(path, "r", encoding="utf-8") as f:
        return parse_prompt(f.read(), name)


def render(template, **values):
    """Substitute {placeholders} in one pass. Inserted text is never re-scanned."""
    def repl(m):
        key = m.group(1)
        return str(values[key]) if key in values else m.group(0)
    return RE_PLACEHOLDER.sub(repl, template)


class PromptSet:
    """Loaded templates, cached per instance."""

    def __init__(self, prompts_dir=PROMPTS_DIR):
        self.prompts_dir = prompts_dir
        self._cache = {}

    def get(self, name):
        if name not in self._cache:
            self._cache[name] = load_prompt(name, self.prompts_dir)
        return self._cache[name]

    def messages(self, name, **values):
        prompt = self.get(name)
        return [
            Message("system", render(prompt.system, **values)),
            Message("user", render(prompt.user, **values)),
        ]
