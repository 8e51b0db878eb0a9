"""Course code extraction and class resolution for Canvas events."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from processor.models import ClassRef

logger = logging.getLogger(__name__)

FALLBACK_CLASS_CODE = 'canvas'
DEFAULT_USER_ID = 'local-user'

SUBJECT_NAMES = {
    'EE': 'Electrical Engineering',
    'CS': 'Computer Science',
    'MATH': 'Mathematics',
    'PHYS': 'Physics',
    'CHEM': 'Chemistry',
    'BIOL': 'Biology',
    'UGRD': 'Undergraduate',
    'ENGL': 'English',
    'HIST': 'History',
    'PSYC': 'Psychology',
    'ECON': 'Economics',
    'POLI': 'Political Science',
    'PHIL': 'Philosophy',
    'ANTH': 'Anthropology',
    'SOCI': 'Sociology'
}

# Leading words that look like "SUBJ 123" but name the task, not the course
NON_SUBJECT_WORDS = {'HW', 'PS', 'LAB', 'QUIZ', 'EXAM', 'TEST', 'WEEK', 'UNIT', 'PART', 'DAY'}

_SECTION_CODE = re.compile(r'\[([A-Z]+_\d+[A-Z]*_[^_\]]+(?:_[^_\]]+)*)\]', re.IGNORECASE)
_SUBJECT_NUMBER_PREFIX = re.compile(r'^([A-Z]+)_(\d+[A-Z]*)', re.IGNORECASE)
# Course numbers run up to four digits (MATH 1010), with an optional letter suffix
_TRADITIONAL_CODE = re.compile(r'^([A-Z]{2,4})\s*(\d{1,4}[A-Z]?)\b')
_SECTION_FRAGMENT = re.compile(r'\[([A-Z]+_\d+[A-Z]*)[^\]]*\]?', re.IGNORECASE)
_SUBJECT_NUMBER = re.compile(r'([A-Z]+)(\d+)', re.IGNORECASE)
_SUBJECT_SPACE_NUMBER = re.compile(r'([A-Z]+)\s*(\d+)', re.IGNORECASE)


@dataclass
class ClassCodeMatch:
    """Course code found in an event summary and the summary without it."""
    code: str
    title: str


def _remove_span(summary: str, match) -> str:
    title = summary[:match.start()] + ' ' + summary[match.end():]
    return ' '.join(title.split())


def _from_section_code(summary: str) -> Optional[ClassCodeMatch]:
    match = _SECTION_CODE.search(summary)
    if not match:
        return None
    canvas_code = match.group(1)
    simplified = _SUBJECT_NUMBER_PREFIX.match(canvas_code)
    if simplified:
        code = simplified.group(1) + simplified.group(2)
    else:
        code = canvas_code.replace('_', '')
    return ClassCodeMatch(code=code.lower(), title=_remove_span(summary, match))


def _from_traditional_code(summary: str) -> Optional[ClassCodeMatch]:
    match = _TRADITIONAL_CODE.match(summary.strip())
    if not match or match.group(1) in NON_SUBJECT_WORDS:
        return None
    # The course code stays in the title, it usually reads as part of the name
    code = (match.group(1) + match.group(2)).lower()
    return ClassCodeMatch(code=code, title=summary.strip())


def _from_section_fragment(summary: str) -> Optional[ClassCodeMatch]:
    match = _SECTION_FRAGMENT.search(summary)
    if not match:
        return None
    code = match.group(1).replace('_', '').lower()
    return ClassCodeMatch(code=code, title=_remove_span(summary, match))


EXTRACTORS: Tuple[Callable[[str], Optional[ClassCodeMatch]], ...] = (
    _from_section_code,
    _from_traditional_code,
    _from_section_fragment,
)


def _squash(name: str) -> str:
    return re.sub(r'\s', '', name).lower()


def _exact_id(cls: ClassRef, code: str) -> bool:
    return cls.id.lower() == code


def _exact_name(cls: ClassRef, code: str) -> bool:
    return cls.name.lower() == code


def _standardized(cls: ClassRef, code: str) -> bool:
    standardized = re.sub(r'^ugrd', '', code).replace('_', '')
    if not standardized:
        return False
    return cls.id.lower() == standardized or _squash(cls.name) == standardized


def _subject_number(cls: ClassRef, code: str) -> bool:
    match = _SUBJECT_NUMBER.search(code)
    if not match:
        return False
    pattern = (match.group(1) + match.group(2)).lower()
    return cls.id.lower() == pattern or _squash(cls.name) == pattern


def _reverse_subject_number(cls: ClassRef, code: str) -> bool:
    match = _SUBJECT_NUMBER.search(cls.id) or _SUBJECT_SPACE_NUMBER.search(cls.name)
    if not match:
        return False
    subject, number = match.group(1), match.group(2)
    if code == (subject + number).lower():
        return True
    # Some feeds give only the course number
    return code == number.lower()


MATCHERS: Tuple[Tuple[str, Callable[[ClassRef, str], bool]], ...] = (
    ('id', _exact_id),
    ('name', _exact_name),
    ('standardized code', _standardized),
    ('subject code', _subject_number),
    ('reverse subject code', _reverse_subject_number),
)


def generate_user_friendly_class_name(class_code: str) -> str:
    """
    Turn a technical class code into a readable name.

    Args:
        class_code: Code such as ``ee123`` or ``ugrd198g``

    Returns:
        Name such as ``Electrical Engineering 123``
    """
    clean_code = re.sub(r'^(canvas|task)_?', '', class_code, flags=re.IGNORECASE).upper()

    if not clean_code:
        return 'Canvas'

    ugrd = re.match(r'^UGRD(\d+[A-Z]*)$', clean_code)
    if ugrd:
        return f"Undergraduate Course {ugrd.group(1)}"

    subject_match = re.match(r'^([A-Z]{2,4})(\d+[A-Z]*)$', clean_code)
    if subject_match:
        subject, number = subject_match.groups()
        return f"{SUBJECT_NAMES.get(subject, subject)} {number}"

    return re.sub(r'([A-Z])(\d)', r'\1 \2', clean_code).replace('_', ' ')


class ClassCodeResolver:
    """Resolve the class an event belongs to, creating it when unknown."""

    def __init__(self, class_store, identity: Optional[str] = None):
        """
        Args:
            class_store: Store providing ``add_class(class_ref, identity)``
            identity: User the created classes belong to
        """
        self.class_store = class_store
        self.identity = identity

    def extract(self, summary: str) -> ClassCodeMatch:
        """Extract the course code from an event summary."""
        for extractor in EXTRACTORS:
            found = extractor(summary)
            if found:
                return found
        return ClassCodeMatch(code=FALLBACK_CLASS_CODE, title=summary.strip())

    def resolve(
        self,
        summary: str,
        existing_classes: List[ClassRef],
        naming_style: str = 'technical'
    ) -> str:
        """
        Resolve the class id for an event summary.

        Args:
            summary: Event summary
            existing_classes: Known classes; a newly created class is appended
            naming_style: ``"technical"`` or ``"descriptive"``

        Returns:
            Class id of the matching or newly created class
        """
        code = self.extract(summary).code
        return self.ensure_class(code, existing_classes, naming_style)

    def ensure_class(
        self,
        code: str,
        existing_classes: List[ClassRef],
        naming_style: str = 'technical'
    ) -> str:
        """
        Find the class matching ``code`` or create it.

        Args:
            code: Lowercase course code
            existing_classes: Known classes; a newly created class is appended
            naming_style: ``"technical"`` or ``"descriptive"``

        Returns:
            Class id
        """
        search_code = code.lower()

        existing = self.find_match(search_code, existing_classes)
        if existing:
            return existing.id

        if naming_style == 'descriptive':
            name = generate_user_friendly_class_name(search_code)
        else:
            name = search_code.upper()

        class_ref = ClassRef(
            id=search_code,
            name=name,
            user_id=self.identity or DEFAULT_USER_ID,
            is_task_class=True,
            created_at=datetime.now(timezone.utc).isoformat()
        )

        try:
            created = self.class_store.add_class(class_ref, self.identity)
        except Exception as e:
            logger.error(f"Error creating class '{search_code}': {e}", exc_info=True)
            return search_code

        created = created or class_ref
        existing_classes.append(created)
        logger.info(f"Created class '{created.name}' (id: {created.id}, style: {naming_style})")
        return created.id

    def find_match(self, code: str, existing_classes: List[ClassRef]) -> Optional[ClassRef]:
        """Return the first known class matching ``code``, trying each matcher in order."""
        for matcher_name, matcher in MATCHERS:
            for cls in existing_classes:
                if matcher(cls, code):
                    logger.debug(f"Class '{code}' matched '{cls.name}' (id: {cls.id}) by {matcher_name}")
                    return cls
        return None
