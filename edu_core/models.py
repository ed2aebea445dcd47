# =============================================================================
# edu_core/models.py
# Collection names, blob reference registry and small value types
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Collection(str, Enum):
    """Names of the JSON collections held in the RecordStore."""
    LESSONS = "lessons"
    SUBSCRIPTIONS = "subscriptions"
    GENERAL_MESSAGES = "generalMessages"
    BOOKS = "books"
    PAYMENT_METHODS = "paymentMethods"
    STUDENTS = "students"
    PURCHASED_LESSONS = "purchasedLessons"
    PURCHASED_SUBSCRIPTIONS = "purchasedSubscriptions"
    TRANSACTIONS = "transactions"
    TRANSFER_REQUESTS = "transferRequests"
    STUDENT_MESSAGES = "studentMessages"
    SUPPORT_MESSAGES = "supportMessages"
    SUPPORT_STAFF = "supportStaff"
    BOOK_ORDERS = "bookOrders"
    EXAM_RESULTS = "examResults"
    STUDENT_NOTIFICATIONS = "studentNotifications"
    TEACHER_NOTIFICATIONS = "teacherNotifications"
    SUPPORT_ACTIVITY_LOG = "supportActivityLog"
    CUSTOM_BACKGROUND = "customBackground"  # single object, not a list
    USER_SESSION = "userSession"  # single object, not a list


class RecordType(str, Enum):
    """Record kinds that carry blob reference fields."""
    LESSON = "lesson"
    SUBSCRIPTION = "subscription"
    STUDENT_QUESTION = "studentQuestion"
    SUPPORT_MESSAGE = "supportMessage"
    TRANSFER_REQUEST = "transferRequest"
    CUSTOM_BACKGROUND = "customBackground"


# Fields holding BlobStore keys, per record type
BLOB_REFERENCE_FIELDS: Dict[RecordType, Tuple[str, ...]] = {
    RecordType.LESSON: (
        "coverImage",
        "videoFile",
        "pdfFile",
        "homeworkFile",
        "solutionFile",
        "homeworkSolutionVideo",
    ),
    RecordType.SUBSCRIPTION: ("image",),
    RecordType.STUDENT_QUESTION: ("imageKey",),
    RecordType.SUPPORT_MESSAGE: ("imageKey",),
    RecordType.TRANSFER_REQUEST: ("receiptImageKey",),
    RecordType.CUSTOM_BACKGROUND: ("imageKey",),
}

# Lesson blob field -> suffix of the upload key prefix "lesson_{id}_{suffix}"
LESSON_UPLOAD_SUFFIXES: Dict[str, str] = {
    "coverImage": "cover",
    "videoFile": "video",
    "pdfFile": "pdf",
    "homeworkFile": "homework",
    "solutionFile": "solution_pdf",
    "homeworkSolutionVideo": "solution_video",
}

# Whether a created record takes over the id assigned by the remote
REMOTE_ID_POLICY: Dict[Collection, bool] = {
    Collection.LESSONS: True,
    Collection.SUBSCRIPTIONS: False,
    Collection.GENERAL_MESSAGES: False,
    Collection.PAYMENT_METHODS: False,
    Collection.STUDENTS: False,
}

# Pulled collections in pull order: (remote endpoint, local collection)
SYNCED_COLLECTIONS: List[Tuple[str, Collection]] = [
    ("lessons", Collection.LESSONS),
    ("subscriptions", Collection.SUBSCRIPTIONS),
    ("general-messages", Collection.GENERAL_MESSAGES),
    ("books", Collection.BOOKS),
    ("payment-methods", Collection.PAYMENT_METHODS),
]


class UserType(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    SUPPORT = "support"


@dataclass
class Upload:
    """A file chosen by the user, not yet in the BlobStore."""
    filename: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UserSession:
    """The logged-in user for the current process."""
    id: Any
    name: str
    type: UserType
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> UserSession:
        return cls(
            id=data["id"],
            name=data["name"],
            type=UserType(data["type"]),
            extra=dict(data.get("extra") or {}),
        )


def blob_fields(record_type: RecordType) -> Tuple[str, ...]:
    """Blob reference fields for a record type (empty for unknown types)."""
    try:
        return BLOB_REFERENCE_FIELDS.get(RecordType(record_type), ())
    except ValueError:
        return ()


def adopts_remote_id(collection: Collection) -> bool:
    return REMOTE_ID_POLICY.get(Collection(collection), False)


def read_general_messages_key(user_id: Any) -> str:
    """Per-user collection of general message ids already read."""
    return f"readGeneralMessages_{user_id}"
