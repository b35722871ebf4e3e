"""Newsletter composition from the day's stories."""

from aginews.digest.composer import NewsletterComposer, stories_context

__all__ = ["NewsletterComposer", "stories_context"]
