"""Data models for Canvas calendar ingestion."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class RawCalendarEvent:
    """One VEVENT block as read from the feed, values still in ICS text form."""
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    uid: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class CalendarInstant:
    """Decoded ICS date token."""
    moment: datetime
    is_date_only: bool = False
    is_fallback: bool = False


@dataclass
class TaskDraft:
    """Task built from a calendar event, ready for the task store."""
    title: str
    type: str
    canvas_uid: Optional[str]
    due_date: str
    due_time: str
    class_id: str
    is_duration: bool = False
    completed: bool = False

    def to_item(self) -> dict:
        """Serialize using the task store's field names."""
        return {
            'title': self.title,
            'type': self.type,
            'canvas_uid': self.canvas_uid,
            'dueDate': self.due_date,
            'dueTime': self.due_time,
            'class': self.class_id,
            'isDuration': self.is_duration,
            'completed': self.completed
        }


@dataclass
class Task(TaskDraft):
    """Task as stored by the task store."""
    id: str = ''
    created_at: Optional[str] = None
    # Set by stores that know whether add_task inserted a new row
    was_created: Optional[bool] = None


@dataclass
class ClassRef:
    """A class (course) record."""
    id: str
    name: str
    user_id: str
    is_task_class: bool = True
    created_at: Optional[str] = None


@dataclass
class TaskType:
    id: str
    name: str


@dataclass
class Settings:
    class_naming_style: str = 'technical'


@dataclass
class SyncResult:
    """Result of a Canvas sync run."""
    success: bool
    message: str
    tasks: List[TaskDraft] = field(default_factory=list)
    added: int = 0
    existing: int = 0
    skipped: int = 0
    warnings: List[str] = field(default_factory=list)
    # Exception class name of a failed sync
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'message': self.message,
            'tasks': [task.to_item() for task in self.tasks],
            'added': self.added,
            'existing': self.existing,
            'skipped': self.skipped,
            'warnings': list(self.warnings),
            'error': self.error
        }
