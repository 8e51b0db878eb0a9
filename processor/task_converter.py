"""Conversion of raw calendar events into task drafts."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from processor.class_resolver import ClassCodeResolver
from processor.date_decoder import DateDecoder
from processor.event_classifier import EventClassifier
from processor.models import (
    CalendarInstant,
    ClassRef,
    RawCalendarEvent,
    TaskDraft,
    TaskType
)

logger = logging.getLogger(__name__)


@dataclass
class ConvertedEvent:
    """Task draft plus what the conversion had to guess."""
    draft: TaskDraft
    date_fallback: bool = False


class TaskConverter:
    """Converts Canvas events into TaskDraft objects."""

    # Canvas assignments without a time are due at the end of the day
    DEFAULT_DUE_TIME = '23:59'
    MAX_TITLE_LENGTH = 200

    def __init__(
        self,
        resolver: ClassCodeResolver,
        classifier: Optional[EventClassifier] = None,
        decoder: Optional[DateDecoder] = None
    ):
        self.resolver = resolver
        self.classifier = classifier or EventClassifier()
        self.decoder = decoder or DateDecoder()

    def convert(
        self,
        event: RawCalendarEvent,
        known_classes: List[ClassRef],
        task_types: List[TaskType],
        naming_style: str = 'technical'
    ) -> ConvertedEvent:
        """
        Convert a single event into a task draft.

        Args:
            event: Event with at least ``summary`` and ``uid``
            known_classes: Classes known for this run; may grow
            task_types: Caller's task types
            naming_style: Naming style for classes created on the way

        Returns:
            ConvertedEvent with the draft and a date fallback flag
        """
        if event.start:
            due = self.decoder.decode(event.start)
        else:
            logger.warning(f"Event '{event.summary}' has no DTSTART, using current time")
            due = CalendarInstant(moment=datetime.now(), is_fallback=True)

        due_date, due_time = self._format_due(due)

        extracted = self.resolver.extract(event.summary)
        class_id = self.resolver.ensure_class(extracted.code, known_classes, naming_style)

        tag = self.classifier.classify(event.summary, event.description)
        task_type = self.resolve_task_type(tag, task_types)

        title = (extracted.title or event.summary or 'Canvas Event')[:self.MAX_TITLE_LENGTH]

        draft = TaskDraft(
            title=title,
            type=task_type,
            canvas_uid=event.uid or None,
            due_date=due_date,
            due_time=due_time,
            class_id=class_id,
            is_duration=False,
            completed=False
        )
        return ConvertedEvent(draft=draft, date_fallback=due.is_fallback)

    def resolve_task_type(self, tag: str, task_types: List[TaskType]) -> str:
        """
        Map a classifier tag onto one of the caller's task type ids.

        Args:
            tag: Tag from EventClassifier
            task_types: Known task types

        Returns:
            Matching type id, the first known type id when nothing matches,
            or the tag itself when no types are known
        """
        if not task_types:
            return tag

        wanted = tag.lower()
        for task_type in task_types:
            if task_type.id.lower() == wanted or task_type.name.lower() == wanted:
                return task_type.id

        logger.debug(f"Task type '{tag}' not found, using '{task_types[0].id}'")
        return task_types[0].id

    def _format_due(self, due: CalendarInstant) -> tuple[str, str]:
        """
        Format a decoded instant as (YYYY-MM-DD, HH:MM) in local time.

        Date-only values get the end-of-day due time.
        """
        moment = due.moment
        if moment.tzinfo is not None:
            moment = moment.astimezone()

        due_date = moment.strftime('%Y-%m-%d')
        if due.is_date_only or due.is_fallback:
            return due_date, self.DEFAULT_DUE_TIME
        return due_date, moment.strftime('%H:%M')
