"""Canvas calendar sync: fetch, parse, convert and store Canvas events."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from fetcher.feed_fetcher import FeedFetcher, describe_non_calendar_body
from fetcher.url_security import mask_sensitive_url, validate_canvas_url
from processor.class_resolver import ClassCodeResolver
from processor.errors import CanvasSyncError, InvalidUrl, MalformedData
from processor.event_classifier import EventClassifier
from processor.ics_tokenizer import IcsTokenizer
from processor.models import RawCalendarEvent, SyncResult, Task, TaskDraft
from processor.task_converter import TaskConverter
from storage.interfaces import ClassStore, SettingsStore, TaskStore

logger = logging.getLogger(__name__)

# Stored tasks younger than this are reported as newly imported
NEW_TASK_WINDOW = timedelta(minutes=5)

UNEXPECTED_ERROR_MESSAGE = 'Canvas sync failed unexpectedly. Please try again.'


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


class SyncOrchestrator:
    """Imports a Canvas calendar feed into the task store.

    Events are processed one at a time: class resolution updates the run's
    list of known classes, so two events for the same new course must not
    be resolved concurrently.
    """

    def __init__(
        self,
        task_store: TaskStore,
        class_store: ClassStore,
        settings_store: SettingsStore,
        fetcher: Optional[FeedFetcher] = None,
        tokenizer: Optional[IcsTokenizer] = None,
        classifier: Optional[EventClassifier] = None,
        progress: Optional[Callable[[str, str], None]] = None
    ):
        """
        Args:
            task_store: TaskStore implementation
            class_store: ClassStore implementation
            settings_store: SettingsStore implementation
            fetcher: Feed fetcher, defaults to the proxy chain
            tokenizer: ICS tokenizer
            classifier: Event classifier
            progress: Called with (stage, detail) as the sync advances
        """
        self.task_store = task_store
        self.class_store = class_store
        self.settings_store = settings_store
        self.fetcher = fetcher or FeedFetcher()
        self.tokenizer = tokenizer or IcsTokenizer()
        self.classifier = classifier or EventClassifier()
        self.progress = progress

    def sync(self, url: str, identity: Optional[str] = None, force_update: bool = False) -> SyncResult:
        """
        Import a Canvas calendar feed.

        Never raises: every failure is reported through the returned result.

        Args:
            url: Canvas ICS feed URL
            identity: User id the tasks belong to
            force_update: Delete previously imported Canvas tasks first

        Returns:
            SyncResult with a human-readable message
        """
        masked_url = mask_sensitive_url(url or '')
        logger.info(
            "Canvas sync started",
            extra={'feed_url': masked_url, 'user_id': identity, 'force_update': force_update}
        )

        try:
            self._report('validating', masked_url)
            validation = validate_canvas_url(url)
            if not validation.is_valid:
                logger.warning(f"Invalid Canvas URL: {validation.reason}")
                return SyncResult(
                    success=False,
                    message=f"Invalid Canvas URL: {validation.reason}",
                    error=InvalidUrl.__name__
                )

            return self._run(url, identity, force_update)
        except CanvasSyncError as e:
            logger.error(
                f"Canvas sync failed: {mask_sensitive_url(str(e))}",
                extra={'error_type': type(e).__name__}
            )
            return SyncResult(success=False, message=self._failure_message(e), error=type(e).__name__)
        except Exception as e:
            logger.error(
                f"Canvas sync failed unexpectedly: {mask_sensitive_url(str(e))}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return SyncResult(success=False, message=UNEXPECTED_ERROR_MESSAGE, error='UnexpectedError')

    def _run(self, url: str, identity: Optional[str], force_update: bool) -> SyncResult:
        self._report('fetching', 'Downloading Canvas calendar')
        ics_text = self.fetcher.fetch(url)

        if 'BEGIN:VCALENDAR' not in ics_text:
            page = describe_non_calendar_body(ics_text)
            raise MalformedData(
                'Response does not appear to be valid ICS calendar data',
                page_title=page,
                content_preview=ics_text[:200]
            )

        self._report('parsing', 'Reading calendar events')
        events = self.tokenizer.parse(ics_text)
        logger.info(f"Parsed {len(events)} events from Canvas feed")

        # One snapshot per run
        known_classes = list(self.class_store.get_classes(identity))
        task_types = list(self.task_store.get_task_types(identity))
        naming_style = self.settings_store.get_settings().class_naming_style

        if force_update and identity:
            self._report('cleanup', 'Removing previously imported Canvas tasks')
            self._purge_canvas_tasks(identity)

        converter = TaskConverter(
            resolver=ClassCodeResolver(self.class_store, identity),
            classifier=self.classifier
        )

        self._report('importing', f"Importing {_plural(len(events), 'event')}")
        added: List[Task] = []
        existing: List[Task] = []
        warnings: List[str] = []
        skipped = 0
        seen_uids = set()

        for event in events:
            if not event.summary or not event.uid:
                logger.warning(f"Skipping event with missing summary or UID: {event.uid or event.summary}")
                skipped += 1
                continue

            if event.uid in seen_uids:
                logger.debug(f"Skipping duplicate UID: {event.uid}")
                continue
            seen_uids.add(event.uid)

            try:
                stored, date_fallback = self._import_event(
                    event, converter, known_classes, task_types, naming_style, identity
                )
            except Exception as e:
                logger.warning(
                    f"Failed to process Canvas event '{event.summary}': {e}",
                    extra={'event_uid': event.uid, 'error_type': type(e).__name__},
                    exc_info=True
                )
                skipped += 1
                continue

            if date_fallback:
                warnings.append(f"'{event.summary}' has an unreadable due date; today's date was used")

            if stored is None:
                logger.warning(f"Task store returned nothing for '{event.summary}'. Task not added")
                skipped += 1
            elif self._is_new(stored):
                added.append(stored)
            else:
                existing.append(stored)

        logger.info(
            "Canvas sync completed",
            extra={'added': len(added), 'existing': len(existing), 'skipped': skipped}
        )
        self._report('complete', f"{len(added)} new, {len(existing)} existing")

        return SyncResult(
            success=True,
            message=self._summary_message(len(events), len(added), len(existing), skipped),
            tasks=[*added, *existing],
            added=len(added),
            existing=len(existing),
            skipped=skipped,
            warnings=warnings
        )

    def _import_event(
        self,
        event: RawCalendarEvent,
        converter: TaskConverter,
        known_classes,
        task_types,
        naming_style: str,
        identity: Optional[str]
    ) -> tuple[Optional[Task], bool]:
        converted = converter.convert(event, known_classes, task_types, naming_style)
        draft: TaskDraft = converted.draft
        logger.debug(
            f"Event '{event.summary}' converted: class={draft.class_id}, "
            f"type={draft.type}, due={draft.due_date} {draft.due_time}"
        )
        stored = self.task_store.add_task(draft, identity)
        return stored, converted.date_fallback

    def _purge_canvas_tasks(self, identity: str) -> int:
        """Delete the user's imported Canvas tasks; individual failures are skipped."""
        try:
            tasks = self.task_store.get_tasks(identity)
        except Exception as e:
            logger.warning(f"Error loading tasks for force update cleanup: {e}")
            return 0

        canvas_tasks = [task for task in tasks if task.canvas_uid and task.canvas_uid.strip()]
        logger.info(f"Force update: removing {len(canvas_tasks)} existing Canvas tasks")

        deleted = 0
        for task in canvas_tasks:
            try:
                if self.task_store.delete_task(task.id, identity):
                    deleted += 1
            except Exception as e:
                logger.warning(f"Failed to delete Canvas task '{task.title}': {e}")

        return deleted

    def _is_new(self, task: Task) -> bool:
        if task.was_created is not None:
            return task.was_created

        created_at = task.created_at
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace('Z', '+00:00'))
            except ValueError:
                return False
        if not isinstance(created_at, datetime):
            return False

        if created_at.tzinfo is None:
            created_at = created_at.astimezone()
        return datetime.now(timezone.utc) - created_at <= NEW_TASK_WINDOW

    @staticmethod
    def _summary_message(event_count: int, added: int, existing: int, skipped: int) -> str:
        if event_count == 0:
            return (
                "Canvas sync completed, but no events were found in the feed. "
                "This could mean no upcoming assignments are available."
            )

        if added and existing:
            message = (
                f"Canvas sync completed! Found {_plural(added, 'new task')} and "
                f"{_plural(existing, 'existing task')}. The new tasks have been added to your calendar."
            )
        elif added:
            message = (
                f"Successfully imported {_plural(added, 'new task')} from Canvas calendar. "
                "Check your calendar for the new assignments!"
            )
        elif existing:
            verb = 'is' if existing == 1 else 'are'
            message = (
                f"Canvas sync completed! All {_plural(existing, 'assignment')} from Canvas {verb} "
                "already in your calendar. No new tasks to import."
            )
        else:
            message = f"Canvas sync completed, but none of the {_plural(event_count, 'event')} could be imported."
            return message

        if skipped:
            message += f" {_plural(skipped, 'event')} could not be imported."
        return message

    @staticmethod
    def _failure_message(error: CanvasSyncError) -> str:
        if isinstance(error, MalformedData) and error.context.get('page_title'):
            page_title = mask_sensitive_url(error.context['page_title'])
            return f"{error.user_message} Canvas returned the page \"{page_title}\" instead."
        return error.user_message

    def _report(self, stage: str, detail: str) -> None:
        if not self.progress:
            return
        try:
            self.progress(stage, detail)
        except Exception as e:
            # A broken listener must not fail the import
            logger.warning(f"Progress callback failed at stage '{stage}': {e}")
