"""Default generation templates and placeholder rendering."""

import re
from collections.abc import Mapping
from typing import Any

from alfafrens_bot.config import CharacterConfig, GenerationConfig

DEFAULT_POST_TEMPLATE = """You are {{character.name}}, an AI assistant with the following traits:
{{character.adjectives}}

Your topics of expertise include:
{{character.topics}}

TASK: Write a new post for a community channel.

RULES:
1. Write ONLY the post content
2. Do not include any meta-commentary
3. Start directly with your message
4. Keep it engaging and relevant
5. Maximum length: 2-3 sentences
6. Be concise and meaningful

POST:"""

DEFAULT_RESPONSE_TEMPLATE = """You are {{character.name}}, an AI assistant with the following traits:
{{character.adjectives}}

Your topics of expertise include:
{{character.topics}}

CONVERSATION HISTORY:
{{message.history}}
{{knowledge}}
{{websearch}}

USER ({{message.sender}}): {{message.content}}

TASK: Respond to the user's message.

RULES:
1. Keep responses concise (1-2 sentences)
2. Be direct and helpful
3. Stay focused on the question
4. No meta-commentary

YOUR RESPONSE:"""

DEFAULT_EVALUATION_TEMPLATE = """TASK: Decide whether the AI assistant should respond to this message.

Message: "{{message.content}}"
Sender: {{message.sender}}

INSTRUCTIONS:
You are helping me decide if the AI assistant should respond to the message above.
Consider the following:
1. Is this a substantial message that requires a response?
2. Is the message directed at the assistant?
3. Is the message a question, request for help, or engaging in conversation?
4. Is the message appropriate to respond to?

Response format:
Return a JSON array with:
1. A boolean (true/false) indicating whether to respond
2. A brief explanation for your decision

Example response:
```json
[true, "This is a direct question that the assistant should answer"]
```

Or:
```json
[false, "This message is too short and doesn't require a response"]
```
"""

DEFAULT_TEMPLATES = {
    "evaluation": DEFAULT_EVALUATION_TEMPLATE,
    "response": DEFAULT_RESPONSE_TEMPLATE,
    "post": DEFAULT_POST_TEMPLATE,
}

CORRECTION_SUFFIX = (
    "\n\nYour initial response contains factual issues that need correction:\n"
    "{corrections}\n\nRevised response:"
)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w]*)(?:\.([A-Za-z_][\w]*))?\s*\}\}")


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Fill ``{{name}}`` and ``{{group.key}}`` placeholders.

    Groups are mappings one level deep. Lists render comma-separated.
    Placeholders with no matching variable are left as written.
    """

    def replace(match: re.Match) -> str:
        name, key = match.group(1), match.group(2)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        if key is None:
            if isinstance(value, Mapping):
                return match.group(0)
            return _stringify(value)
        if not isinstance(value, Mapping) or key not in value:
            return match.group(0)
        return _stringify(value[key])

    return _PLACEHOLDER.sub(replace, template)


def character_variables(character: CharacterConfig) -> dict[str, Any]:
    """Template variables describing the persona."""
    return {
        "character": {
            "name": character.name,
            "adjectives": character.adjectives,
            "topics": character.topics,
        }
    }


def template_for(config: GenerationConfig, kind: str) -> str:
    """Configured template for ``kind``, falling back to the default."""
    return getattr(config, kind).template or DEFAULT_TEMPLATES[kind]


def correction_prompt(prompt: str, corrections: list[str]) -> str:
    """Append correction notes to the original prompt for the single revision pass."""
    return prompt + CORRECTION_SUFFIX.format(corrections="\n".join(corrections))
