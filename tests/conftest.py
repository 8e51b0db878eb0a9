"""Shared fixtures for Canvas sync tests."""
import os
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from processor.models import ClassRef, Settings, Task, TaskType

FEED_URL = 'https://canvas.example.edu/feeds/calendars/user_AbCdEf0123456789WxYz.ics'

SAMPLE_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "PRODID:-//Instructure//Canvas//EN\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTART;VALUE=DATE;VALUE=DATE:20250115\r\n"
    "DTEND;VALUE=DATE;VALUE=DATE:20250115\r\n"
    "SUMMARY:Homework 2 [EE_123_B01_25U]\r\n"
    "DESCRIPTION:Solve problems 1-5\\, show your work\r\n"
    "UID:event-assignment-1001\r\n"
    "END:VEVENT\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTART;VALUE=DATE:20250120\r\n"
    "SUMMARY:Lab 1 [EE_123_C02_25U]\r\n"
    "UID:event-assignment-1002\r\n"
    "END:VEVENT\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTART:20250201T235900Z\r\n"
    "SUMMARY:Midterm Exam 1 [CS_100_A01_25U]\r\n"
    "UID:event-assignment-1003\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)

EMPTY_ICS = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "PRODID:-//Instructure//Canvas//EN\r\n"
    "END:VCALENDAR\r\n"
)


class InMemoryTaskStore:
    """Task store keeping at most one task per canvas_uid."""

    def __init__(self, task_types=None, report_created=True):
        self.tasks = {}
        self.task_types = task_types if task_types is not None else [
            TaskType(id='assignment', name='Assignment'),
            TaskType(id='homework', name='Homework'),
            TaskType(id='exam', name='Exam'),
            TaskType(id='lab', name='Lab'),
        ]
        self.report_created = report_created
        self.deleted = []

    def get_tasks(self, identity):
        return list(self.tasks.values())

    def add_task(self, draft, identity):
        for task in self.tasks.values():
            if draft.canvas_uid and task.canvas_uid == draft.canvas_uid:
                if self.report_created:
                    task.was_created = False
                return task

        task = Task(
            **vars(draft),
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc).isoformat()
        )
        self.tasks[task.id] = task
        if self.report_created:
            task.was_created = True
        return task

    def delete_task(self, task_id, identity):
        self.deleted.append(task_id)
        return self.tasks.pop(task_id, None) is not None

    def get_task_types(self, identity):
        return list(self.task_types)


class InMemoryClassStore:
    def __init__(self, classes=None):
        self.classes = list(classes or [])
        self.added = []

    def get_classes(self, identity):
        return list(self.classes)

    def add_class(self, class_ref, identity):
        self.classes.append(class_ref)
        self.added.append(class_ref)
        return class_ref


class StaticSettingsStore:
    def __init__(self, naming_style='technical'):
        self.naming_style = naming_style

    def get_settings(self):
        return Settings(class_naming_style=self.naming_style)


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture
def no_sleep():
    """Skip retry backoff delays."""
    with patch('fetcher.feed_fetcher.time.sleep') as mock_sleep:
        yield mock_sleep


@pytest.fixture
def task_store():
    return InMemoryTaskStore()


@pytest.fixture
def class_store():
    return InMemoryClassStore()


@pytest.fixture
def settings_store():
    return StaticSettingsStore()


@pytest.fixture
def known_class():
    return ClassRef(id='ee123', name='EE123', user_id='student-1')


TASKS_TABLE = 'test-canvas-tasks'
CLASSES_TABLE = 'test-canvas-classes'


@pytest.fixture
def dynamodb_tables(aws_credentials):
    """Create mock DynamoDB tables for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        dynamodb.create_table(
            TableName=TASKS_TABLE,
            KeySchema=[{'AttributeName': 'task_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'task_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        dynamodb.create_table(
            TableName=CLASSES_TABLE,
            KeySchema=[
                {'AttributeName': 'user_id', 'KeyType': 'HASH'},
                {'AttributeName': 'class_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'user_id', 'AttributeType': 'S'},
                {'AttributeName': 'class_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield dynamodb
