"""
Prompt construction for the text-generation service.

Produces two strings:

- a fixed **system** instruction stating the output contract, and
- a **user** instruction carrying the literal request plus schema hints.

The contract is declarative only.  Nothing here checks whether the model
complied: that is ``response_extractor``'s and ``query_sanitizer``'s job.
"""

from typing import List, NamedTuple, Optional

from config import Settings

MODE_FIND = "find"
MODE_AGGREGATE = "aggregate"
MODES = (MODE_FIND, MODE_AGGREGATE)


class Prompt(NamedTuple):
    system: str
    user: str


class PromptCompiler:
    """Builds prompts; holds only immutable configuration."""

    def __init__(self, settings: Settings):
        self.max_limit = settings.max_limit
        self.blocked_operators = list(settings.blocked_operators)

    def system_prompt(self) -> str:
        blocked = ", ".join(self.blocked_operators)
        # Use double-braces {{ }} to escape literal JSON braces inside f-string
        return f"""You translate natural language into MongoDB queries.

OUTPUT CONTRACT: respond with ONLY one raw JSON object:
  find mode:      {{"query": {{<filter>}}, "projection": {{...}}, "sort": {{...}}, "limit": <int>}}
                  ("projection", "sort" and "limit" are optional)
  aggregate mode: {{"pipeline": [{{<stage>}}, ...], "limit": <int>}}

RULES:
 1. No prose, no explanation, no markdown, no fenced code blocks.
 2. Never include database or collection names in the output.
 3. Use field names exactly as spelled (and cased) in the supplied field list.
 4. Never emit an empty condition when the request implies a concrete value
    (e.g. "named Jens" → {{"name": "Jens"}}, not {{}} and not {{"$regex": ""}}).
 5. Never use these operators: {blocked}. No JavaScript.
 6. Keep "limit" between 1 and {self.max_limit}.
 7. Use extended JSON for special values: {{"$oid": "<24 hex>"}},
    {{"$date": "YYYY-MM-DDTHH:MM:SSZ"}}, {{"$regex": "...", "$options": "i"}}."""

    def user_prompt(
        self,
        natural: str,
        mode: str,
        fields: Optional[List[str]] = None,
        collection: Optional[str] = None,
    ) -> str:
        lines = [f"MODE: {mode}", f'REQUEST: "{natural}"']
        if collection:
            lines.append(f"TARGET COLLECTION: {collection}")
        if fields:
            lines.append("KNOWN FIELDS (exact casing):")
            lines.extend(f"  - {f}" for f in fields)
        if mode == MODE_AGGREGATE:
            lines.append('Respond with {"pipeline": [...]} only.')
        else:
            lines.append('Respond with {"query": {...}} only.')
        return "\n".join(lines)

    def build(
        self,
        natural: str,
        mode: str,
        fields: Optional[List[str]] = None,
        collection: Optional[str] = None,
    ) -> Prompt:
        return Prompt(
            system=self.system_prompt(),
            user=self.user_prompt(natural, mode, fields, collection),
        )
