"""Keyword-based task type classification for calendar events."""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TAG = 'assignment'


@dataclass(frozen=True)
class ClassificationRule:
    """Maps text matching ``pattern`` (and not ``exclude``) to ``tag``."""
    tag: str
    pattern: Pattern
    exclude: Optional[Pattern] = None

    def matches(self, text: str) -> bool:
        if not self.pattern.search(text):
            return False
        return not (self.exclude and self.exclude.search(text))


def _rule(tag: str, pattern: str, exclude: Optional[str] = None) -> ClassificationRule:
    return ClassificationRule(
        tag=tag,
        pattern=re.compile(pattern),
        exclude=re.compile(exclude) if exclude else None
    )


# Order matters: "final" appears in both "final exam" and "final project",
# and reflections must win over the loose exam terms.
RULES: Tuple[ClassificationRule, ...] = (
    _rule('homework', r'\b(reflection|journal|weekly reflection|week \d+ reflection)\b'),
    _rule('homework', r'\b(homework|hw \d+|assignment \d+|problem set|exercise|weekly assignment)\b'),
    _rule('exam', r'\b(exam \d+|midterm exam?|final exam|test \d+)\b'),
    _rule('exam', r'\b(exam|midterm|test)\b', exclude=r'\b(reflection|journal|homework|assignment)\b'),
    _rule('quiz', r'\b(quiz|quizzes)\b'),
    _rule('lab', r'\b(lab \d+|laboratory|practical|lab report|lab assignment)\b'),
    _rule('project', r'\b(project|capstone|final project)\b'),
    _rule('discussion', r'\b(discussion|forum|post|reply|respond)\b'),
    _rule('reading', r'\b(reading|read|chapter|textbook)\b'),
    _rule('presentation', r'\b(presentation|present|slide|demo)\b'),
    _rule('paper', r'\b(paper|essay|report|write|writing|draft)\b'),
    _rule('research', r'\b(research|study|investigate|analysis|analyze)\b'),
)


class EventClassifier:
    """Classify an event into a task type tag using an ordered rule table."""

    def __init__(self, rules: Tuple[ClassificationRule, ...] = RULES):
        self.rules = rules

    def classify(self, summary: Optional[str], description: Optional[str] = None) -> str:
        """
        Return the task type tag for an event.

        Args:
            summary: Event summary
            description: Event description

        Returns:
            Tag of the first matching rule, or ``"assignment"``
        """
        text = f"{summary or ''} {description or ''}".lower()

        for rule in self.rules:
            if rule.matches(text):
                logger.debug(f"Classified '{summary}' as {rule.tag}")
                return rule.tag

        return DEFAULT_TAG
