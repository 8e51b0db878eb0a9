"""Unit tests for SyncOrchestrator."""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from conftest import (
    CLASSES_TABLE,
    EMPTY_ICS,
    FEED_URL,
    SAMPLE_ICS,
    TASKS_TABLE,
    InMemoryClassStore,
    InMemoryTaskStore,
    StaticSettingsStore
)
from processor.errors import AccessDenied, ParseError, RateLimited
from processor.models import Task
from storage.dynamodb_stores import DynamoDBClassStore, DynamoDBTaskStore
from sync.orchestrator import UNEXPECTED_ERROR_MESSAGE, SyncOrchestrator


def _calendar(*events):
    lines = ['BEGIN:VCALENDAR', 'VERSION:2.0']
    for event_lines in events:
        lines += ['BEGIN:VEVENT', *event_lines, 'END:VEVENT']
    lines.append('END:VCALENDAR')
    return '\r\n'.join(lines) + '\r\n'


def _fetcher(body=SAMPLE_ICS):
    fetcher = Mock()
    fetcher.fetch.return_value = body
    return fetcher


@pytest.fixture
def orchestrator_factory(task_store, class_store, settings_store):
    def factory(body=SAMPLE_ICS, **kwargs):
        return SyncOrchestrator(
            task_store=kwargs.pop('task_store', task_store),
            class_store=kwargs.pop('class_store', class_store),
            settings_store=kwargs.pop('settings_store', settings_store),
            fetcher=kwargs.pop('fetcher', _fetcher(body)),
            **kwargs
        )
    return factory


class TestSyncOrchestrator:
    """Test cases for SyncOrchestrator class."""

    def test_sync_imports_all_events(self, orchestrator_factory, task_store, class_store):
        """Test every event in the feed becomes a task."""
        result = orchestrator_factory().sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.error is None
        assert result.added == 3
        assert result.existing == 0
        assert result.skipped == 0
        assert result.message == (
            'Successfully imported 3 new tasks from Canvas calendar. '
            'Check your calendar for the new assignments!'
        )

        by_uid = {task.canvas_uid: task for task in task_store.tasks.values()}
        assert by_uid['event-assignment-1001'].type == 'homework'
        assert by_uid['event-assignment-1001'].class_id == 'ee123'
        assert by_uid['event-assignment-1002'].type == 'lab'
        assert by_uid['event-assignment-1002'].class_id == 'ee123'
        assert by_uid['event-assignment-1003'].type == 'exam'
        assert by_uid['event-assignment-1003'].class_id == 'cs100'

        assert sorted(cls.id for cls in class_store.added) == ['cs100', 'ee123']
        assert all(cls.user_id == 'student-1' for cls in class_store.added)

    def test_second_sync_reports_existing(self, orchestrator_factory, task_store, class_store):
        """Test syncing the same feed twice adds nothing the second time."""
        orchestrator_factory().sync(FEED_URL, identity='student-1')
        result = orchestrator_factory().sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.added == 0
        assert result.existing == 3
        assert len(task_store.tasks) == 3
        assert len(class_store.added) == 2
        assert result.message == (
            'Canvas sync completed! All 3 assignments from Canvas are already in your calendar. '
            'No new tasks to import.'
        )

    def test_single_existing_task_message(self, orchestrator_factory):
        """Test the message for a single existing task."""
        body = _calendar(['UID:only-1', 'SUMMARY:Quiz 1', 'DTSTART;VALUE=DATE:20250115'])
        orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        result = orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        assert result.message == (
            'Canvas sync completed! All 1 assignment from Canvas is already in your calendar. '
            'No new tasks to import.'
        )

    def test_mixed_new_and_existing(self, orchestrator_factory):
        """Test new and existing tasks are counted separately."""
        first = _calendar(['UID:a', 'SUMMARY:Quiz 1', 'DTSTART;VALUE=DATE:20250115'])
        orchestrator_factory(first).sync(FEED_URL, identity='student-1')

        both = _calendar(
            ['UID:a', 'SUMMARY:Quiz 1', 'DTSTART;VALUE=DATE:20250115'],
            ['UID:b', 'SUMMARY:Quiz 2', 'DTSTART;VALUE=DATE:20250122']
        )
        result = orchestrator_factory(both).sync(FEED_URL, identity='student-1')

        assert result.added == 1
        assert result.existing == 1
        assert result.message == (
            'Canvas sync completed! Found 1 new task and 1 existing task. '
            'The new tasks have been added to your calendar.'
        )

    def test_invalid_url_is_not_fetched(self, orchestrator_factory):
        """Test an invalid URL fails before any fetch."""
        fetcher = _fetcher()
        orchestrator = orchestrator_factory(fetcher=fetcher)

        result = orchestrator.sync('http://canvas.example.edu/feeds/calendars/user_abc.ics')

        assert result.success is False
        assert result.error == 'InvalidUrl'
        assert result.message == 'Invalid Canvas URL: Canvas URL must use HTTPS'
        fetcher.fetch.assert_not_called()

    def test_empty_url(self, orchestrator_factory):
        """Test an empty URL fails as invalid."""
        result = orchestrator_factory().sync('')

        assert result.success is False
        assert result.message == 'Invalid Canvas URL: No Canvas calendar URL provided'

    def test_empty_feed(self, orchestrator_factory):
        """Test a feed without events succeeds with nothing added."""
        result = orchestrator_factory(EMPTY_ICS).sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.tasks == []
        assert result.message.startswith('Canvas sync completed, but no events were found in the feed.')

    def test_html_body_reports_page_title(self, orchestrator_factory):
        """Test an HTML reply names the returned page in the message."""
        body = '<html><head><title>Log In to Canvas</title></head><body>Please log in</body></html>'

        result = orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        assert result.success is False
        assert result.error == 'MalformedData'
        assert 'Log In to Canvas' in result.message

    @pytest.mark.parametrize('error', [
        RateLimited('corsproxy.io rate limited the request', retry_after='60'),
        AccessDenied('All proxy services and direct fetch failed', status_code=403),
    ])
    def test_fetch_errors_use_user_message(self, orchestrator_factory, error):
        """Test fetch errors surface their user message."""
        fetcher = Mock()
        fetcher.fetch.side_effect = error

        result = orchestrator_factory(fetcher=fetcher).sync(FEED_URL, identity='student-1')

        assert result.success is False
        assert result.error == type(error).__name__
        assert result.message == error.user_message

    def test_parse_error(self, orchestrator_factory):
        """Test a parse failure is reported."""
        tokenizer = Mock()
        tokenizer.parse.side_effect = ParseError('bad data')

        result = orchestrator_factory(tokenizer=tokenizer).sync(FEED_URL, identity='student-1')

        assert result.success is False
        assert result.message == ParseError.user_message

    def test_unexpected_error(self, orchestrator_factory):
        """Test unexpected exceptions produce the generic message."""
        class_store = Mock()
        class_store.get_classes.side_effect = RuntimeError('boom')

        result = orchestrator_factory(class_store=class_store).sync(FEED_URL, identity='student-1')

        assert result.success is False
        assert result.error == 'UnexpectedError'
        assert result.message == UNEXPECTED_ERROR_MESSAGE

    def test_failure_log_masks_token(self, orchestrator_factory, caplog):
        """Test failure logs do not leak the feed token."""
        fetcher = Mock()
        fetcher.fetch.side_effect = RuntimeError(f'cannot reach {FEED_URL}')

        with caplog.at_level('INFO', logger='sync.orchestrator'):
            orchestrator_factory(fetcher=fetcher).sync(FEED_URL, identity='student-1')

        assert caplog.records
        assert all('AbCdEf0123456789WxYz' not in record.getMessage() for record in caplog.records)

    def test_force_update_removes_canvas_tasks(self, orchestrator_factory, task_store):
        """Test force update removes previously imported Canvas tasks."""
        task_store.tasks['old-canvas'] = Task(
            title='Old import', type='homework', canvas_uid='event-old', due_date='2024-12-01',
            due_time='23:59', class_id='ee123', id='old-canvas'
        )
        task_store.tasks['manual'] = Task(
            title='Dentist', type='assignment', canvas_uid=None, due_date='2025-01-10',
            due_time='09:00', class_id='personal', id='manual'
        )
        stages = []

        result = orchestrator_factory(progress=lambda stage, detail: stages.append(stage)).sync(
            FEED_URL, identity='student-1', force_update=True
        )

        assert result.added == 3
        assert task_store.deleted == ['old-canvas']
        assert 'manual' in task_store.tasks
        assert stages == ['validating', 'fetching', 'parsing', 'cleanup', 'importing', 'complete']

    def test_force_update_without_identity_skips_cleanup(self, orchestrator_factory, task_store):
        """Test force update without an identity deletes nothing."""
        task_store.tasks['old-canvas'] = Task(
            title='Old import', type='homework', canvas_uid='event-old', due_date='2024-12-01',
            due_time='23:59', class_id='ee123', id='old-canvas'
        )

        orchestrator_factory().sync(FEED_URL, force_update=True)

        assert task_store.deleted == []

    def test_progress_stages(self, orchestrator_factory):
        """Test progress is reported for each stage in order."""
        progress = Mock()

        orchestrator_factory(progress=progress).sync(FEED_URL, identity='student-1')

        stages = [call.args[0] for call in progress.call_args_list]
        assert stages == ['validating', 'fetching', 'parsing', 'importing', 'complete']

    def test_failing_progress_callback_is_ignored(self, orchestrator_factory, caplog):
        """Test a progress callback that raises does not abort the sync."""
        progress = Mock(side_effect=RuntimeError('listener gone'))

        with caplog.at_level('WARNING', logger='sync.orchestrator'):
            result = orchestrator_factory(progress=progress).sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.added == 3
        assert progress.call_count == 5
        assert any(
            "Progress callback failed at stage 'validating'" in record.getMessage()
            for record in caplog.records
        )

    def test_duplicate_uid_imported_once(self, orchestrator_factory, task_store):
        """Test events sharing a UID are imported once."""
        body = _calendar(
            ['UID:dup-1', 'SUMMARY:Quiz 1', 'DTSTART;VALUE=DATE:20250115'],
            ['UID:dup-1', 'SUMMARY:Quiz 1 (updated)', 'DTSTART;VALUE=DATE:20250116']
        )

        result = orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        assert result.added == 1
        assert result.skipped == 0
        assert len(task_store.tasks) == 1

    def test_events_without_uid_or_summary_are_skipped(self, orchestrator_factory, task_store):
        """Test events missing a UID or summary are skipped."""
        body = _calendar(
            ['UID:a', 'SUMMARY:Quiz 1', 'DTSTART;VALUE=DATE:20250115'],
            ['SUMMARY:Quiz 2', 'DTSTART;VALUE=DATE:20250122'],
            ['UID:c', 'DTSTART;VALUE=DATE:20250129']
        )

        result = orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        assert result.added == 1
        assert result.skipped == 2
        assert result.message == (
            'Successfully imported 1 new task from Canvas calendar. '
            'Check your calendar for the new assignments! 2 events could not be imported.'
        )

    def test_failing_event_does_not_stop_sync(self, orchestrator_factory):
        """Test one failing event does not stop the rest."""
        class FlakyTaskStore(InMemoryTaskStore):
            def add_task(self, draft, identity):
                if draft.canvas_uid == 'event-assignment-1002':
                    raise RuntimeError('write failed')
                return super().add_task(draft, identity)

        store = FlakyTaskStore()

        result = orchestrator_factory(task_store=store).sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.added == 2
        assert result.skipped == 1
        assert result.message.endswith('1 event could not be imported.')

    def test_no_events_imported(self, orchestrator_factory):
        """Test the message when every event fails to import."""
        task_store = Mock()
        task_store.get_task_types.return_value = []
        task_store.add_task.side_effect = RuntimeError('table missing')

        result = orchestrator_factory(task_store=task_store).sync(FEED_URL, identity='student-1')

        assert result.success is True
        assert result.skipped == 3
        assert result.message == 'Canvas sync completed, but none of the 3 events could be imported.'

    def test_unreadable_date_produces_warning(self, orchestrator_factory, task_store):
        """Test an unreadable date adds a warning to the result."""
        body = _calendar(['UID:a', 'SUMMARY:Essay 1', 'DTSTART:not-a-date'])

        result = orchestrator_factory(body).sync(FEED_URL, identity='student-1')

        assert result.added == 1
        assert len(result.warnings) == 1
        assert 'Essay 1' in result.warnings[0]
        task = next(iter(task_store.tasks.values()))
        assert task.due_date == datetime.now().strftime('%Y-%m-%d')
        assert task.due_time == '23:59'

    def test_recency_window_without_created_flag(self, orchestrator_factory):
        """Test stores that do not report creation fall back to created_at age."""
        store = InMemoryTaskStore(report_created=False)
        old = (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat()
        store.tasks['old'] = Task(
            title='Homework 2', type='homework', canvas_uid='event-assignment-1001',
            due_date='2025-01-15', due_time='23:59', class_id='ee123', id='old', created_at=old
        )

        result = orchestrator_factory(task_store=store).sync(FEED_URL, identity='student-1')

        assert result.added == 2
        assert result.existing == 1

    def test_descriptive_class_names(self, orchestrator_factory, class_store):
        """Test classes are named with the descriptive style."""
        orchestrator = orchestrator_factory(settings_store=StaticSettingsStore('descriptive'))

        orchestrator.sync(FEED_URL, identity='student-1')

        assert sorted(cls.name for cls in class_store.added) == [
            'Computer Science 100', 'Electrical Engineering 123'
        ]

    def test_existing_class_reused(self, orchestrator_factory, known_class):
        """Test a known class is reused instead of created."""
        class_store = InMemoryClassStore([known_class])

        orchestrator_factory(class_store=class_store).sync(FEED_URL, identity='student-1')

        assert [cls.id for cls in class_store.added] == ['cs100']

    def test_result_to_dict(self, orchestrator_factory):
        """Test the result serializes with store field names for tasks."""
        result = orchestrator_factory().sync(FEED_URL, identity='student-1')

        data = result.to_dict()

        assert data['success'] is True
        assert data['added'] == 3
        assert len(data['tasks']) == 3
        assert {'title', 'dueDate', 'dueTime', 'class', 'canvas_uid'} <= set(data['tasks'][0])


class TestSyncWithDynamoDB:
    """End-to-end sync against mocked DynamoDB tables."""

    def test_sync_twice_is_idempotent(self, dynamodb_tables, settings_store):
        """Test a second sync against DynamoDB adds nothing."""
        def run():
            orchestrator = SyncOrchestrator(
                task_store=DynamoDBTaskStore(TASKS_TABLE, region_name='us-east-1'),
                class_store=DynamoDBClassStore(CLASSES_TABLE, region_name='us-east-1'),
                settings_store=settings_store,
                fetcher=_fetcher()
            )
            return orchestrator.sync(FEED_URL, identity='student-1')

        first = run()
        second = run()

        assert first.added == 3
        assert second.added == 0
        assert second.existing == 3
        assert dynamodb_tables.Table(TASKS_TABLE).scan()['Count'] == 3
        classes = dynamodb_tables.Table(CLASSES_TABLE).scan()['Items']
        assert sorted(item['class_id'] for item in classes) == ['cs100', 'ee123']
