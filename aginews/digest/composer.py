"""Newsletter composer: turn the day's raw stories into newsletter HTML."""

from __future__ import annotations

import html
import json
import logging
import re
from datetime import date
from typing import Callable, List, Optional, Sequence

from aginews.llm import ModelFallbackChain
from aginews.storage.models import NEWSLETTER_DRAFT, Newsletter, Story, utcnow

logger = logging.getLogger(__name__)

COMPOSE_PROMPT = """You are the editor of AGI News, a short daily email about AI and LLMs.
Today is {today}. Below is a JSON list of stories collected today.

Write the newsletter as an HTML fragment (no <html> or <body> tags):
- open with a one-sentence greeting;
- group related stories, skip duplicates and anything not about AI;
- for each story give a bold headline linked to its url and a one or two sentence summary;
- keep it scannable and under 800 words.

Return only the HTML.

Stories:
{stories}
"""

_FENCE_RE = re.compile(r"^```(?:html)?\s*|\s*```$", re.IGNORECASE)


def stories_context(stories: Sequence[Story]) -> str:
    """JSON text of the raw stories, passed to the LLM and logged by delivery."""
    return json.dumps([s.to_dict() for s in stories], ensure_ascii=False)


class NewsletterComposer:
    """Compose a draft Newsletter from stories through the LLM fallback chain.

    With ``use_template=True`` (mock provider, dry runs) a deterministic HTML
    list is produced instead.
    """

    def __init__(
        self,
        chain: ModelFallbackChain,
        use_template: bool = False,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.chain = chain
        self.use_template = use_template
        self.today = today

    async def compose(self, stories: Sequence[Story], context: Optional[str] = None) -> Newsletter:
        if not stories:
            logger.warning("No stories to compose; producing empty newsletter")
            return Newsletter(content="", status=NEWSLETTER_DRAFT, created_at=utcnow())

        if self.use_template:
            content = self.render_template(stories)
        else:
            prompt = COMPOSE_PROMPT.format(
                today=self.today().strftime("%B %d, %Y"),
                stories=context if context is not None else stories_context(stories),
            )
            text, model = await self.chain.complete(prompt)
            content = _FENCE_RE.sub("", text.strip()).strip()
            logger.info("Composed newsletter with %s (%d chars)", model, len(content))

        return Newsletter(content=content, status=NEWSLETTER_DRAFT, created_at=utcnow())

    def render_template(self, stories: Sequence[Story]) -> str:
        items: List[str] = []
        for s in stories:
            summary = html.escape(s.summary or s.content[:300])
            items.append(
                f'<li><a href="{html.escape(s.url, quote=True)}"><strong>{html.escape(s.title)}</strong></a>'
                f"<br>{summary}</li>"
            )
        day = self.today().strftime("%B %d, %Y")
        return (
            f"<h2>AGI News – {day}</h2>"
            f"<p>Here are today's top AI stories.</p>"
            f"<ul>{''.join(items)}</ul>"
        )
