# =============================================================================
# edu_core/services/messaging_service.py
# Student questions, support chat, announcements and notifications
# =============================================================================

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from edu_core.models import Collection, Upload, UserType, read_general_messages_key
from edu_core.offline.blob_store import BlobHandle
from edu_core.utils.ids import now_ms
from .base_service import BaseService, ServiceResult


class MessagingService(BaseService):
    """Messages between students, support staff and the teacher."""

    async def submit_question(
        self,
        subject: str,
        text: str,
        image: Optional[Upload] = None,
        lesson_id: Any = None,
    ) -> ServiceResult:
        """A student asks the teacher a question, optionally with a picture."""
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied
        subject, text = (subject or "").strip(), (text or "").strip()
        if not subject or not text:
            return ServiceResult.fail("Please enter the question subject and text", "VALIDATION")

        user = self.ctx.current_user
        image_key = await self.references.store_upload(image, f"question_{user.id}_{now_ms()}")
        message = {
            "id": self.new_id(),
            "studentId": user.id,
            "studentName": user.name,
            "lessonId": lesson_id,
            "subject": subject,
            "text": text,
            "imageKey": image_key,
            "timestamp": datetime.now().isoformat(),
            "isRead": False,
            "replies": [],
        }

        messages = self.records.get_list(Collection.STUDENT_MESSAGES.value)
        messages.append(message)
        if not self.records.set(Collection.STUDENT_MESSAGES.value, messages):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(message)

    async def send_support_message(self, text: str, image: Optional[Upload] = None) -> ServiceResult:
        """A student writes to support; text, a picture, or both."""
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied
        text = (text or "").strip()
        if not text and image is None:
            return ServiceResult.fail("Please write a message or attach an image", "VALIDATION")

        user = self.ctx.current_user
        image_key = await self.references.store_upload(image, f"support_{user.id}_{now_ms()}")
        message = {
            "id": self.new_id(),
            "from": "student",
            "studentId": user.id,
            "studentName": user.name,
            "text": text,
            "imageKey": image_key,
            "timestamp": datetime.now().isoformat(),
            "isRead": False,
        }

        messages = self.records.get_list(Collection.SUPPORT_MESSAGES.value)
        messages.append(message)
        if not self.records.set(Collection.SUPPORT_MESSAGES.value, messages):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(message)

    def chat_overview(self) -> List[Dict[str, Any]]:
        """Students who have written to support, with their unread count."""
        messages = self.records.get_list(Collection.SUPPORT_MESSAGES.value)
        student_ids = {m.get("studentId") for m in messages}
        overview = []
        for student in self.records.get_list(Collection.STUDENTS.value):
            if student.get("id") not in student_ids:
                continue
            unread = sum(
                1 for m in messages
                if m.get("studentId") == student.get("id") and m.get("from") == "student" and not m.get("isRead")
            )
            overview.append({"student": student, "unread": unread})
        return overview

    async def support_chat(self, student_id: Any, mark_read: bool = True) -> ServiceResult:
        """
        Open the chat with one student.

        The student's unread messages are marked read when ``mark_read``.
        """
        denied = self.require_user(UserType.SUPPORT)
        if denied is not None:
            return denied

        messages = self.records.get_list(Collection.SUPPORT_MESSAGES.value)
        chat = [m for m in messages if m.get("studentId") == student_id]

        if mark_read:
            changed = False
            for message in chat:
                if message.get("from") == "student" and not message.get("isRead"):
                    message["isRead"] = True
                    changed = True
            if changed:
                self.records.set(Collection.SUPPORT_MESSAGES.value, messages)

        return ServiceResult.ok(chat)

    async def send_chat_reply(self, student_id: Any, text: str) -> ServiceResult:
        """Support answers a student in their chat."""
        denied = self.require_user(UserType.SUPPORT)
        if denied is not None:
            return denied
        text = (text or "").strip()
        if not text or student_id is None:
            return ServiceResult.fail("Nothing to send", "VALIDATION")

        user = self.ctx.current_user
        message = {
            "id": self.new_id(),
            "from": "support",
            "supportId": user.id,
            "supportName": user.name,
            "studentId": student_id,
            "text": text,
            "timestamp": datetime.now().isoformat(),
            "isRead": False,
        }

        messages = self.records.get_list(Collection.SUPPORT_MESSAGES.value)
        messages.append(message)
        if not self.records.set(Collection.SUPPORT_MESSAGES.value, messages):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(message)

    async def reply_to_question(self, message_id: Any, text: str) -> ServiceResult:
        """
        The teacher answers a student question.

        The reply is appended to the question, which is marked read, and the
        student gets a personal notification.
        """
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied
        text = (text or "").strip()
        if not text:
            return ServiceResult.fail("Please write a reply", "VALIDATION")

        messages = self.records.get_list(Collection.STUDENT_MESSAGES.value)
        index = self.find_index(messages, message_id)
        if index == -1:
            return ServiceResult.fail("Question not found", "NOT_FOUND")
        question = messages[index]

        now = datetime.now().isoformat()
        reply = {
            "id": self.new_id(),
            "teacherId": self.ctx.current_user.id,
            "text": text,
            "timestamp": now,
        }
        question.setdefault("replies", []).append(reply)
        question["isRead"] = True
        if not self.records.set(Collection.STUDENT_MESSAGES.value, messages):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        notifications = self.records.get_list(Collection.STUDENT_NOTIFICATIONS.value)
        notifications.append({
            "id": self.new_id(),
            "studentId": question.get("studentId"),
            "type": "teacher",
            "title": f"Reply to: {question.get('subject')}",
            "message": text,
            "questionId": question["id"],
            "timestamp": now,
            "isRead": False,
        })
        if not self.records.set(Collection.STUDENT_NOTIFICATIONS.value, notifications):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(reply)

    async def attachment_handle(self, message: Dict[str, Any]) -> Optional[BlobHandle]:
        """Display handle for a message's picture, or None."""
        return await self.ctx.blobs.resolve_to_handle(message.get("imageKey"))

    # =========================================================================
    # GENERAL MESSAGES
    # =========================================================================

    async def create_general_message(
        self,
        target: str,
        title: str,
        content: str,
        duration: Any = 7,
        priority: str = "normal",
    ) -> ServiceResult:
        """Publish an announcement to a grade (or "all")."""
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied
        title, content = (title or "").strip(), (content or "").strip()
        if not target or not title or not content:
            return ServiceResult.fail("Please fill in all required fields", "VALIDATION")
        try:
            duration = int(duration)
        except (TypeError, ValueError):
            return ServiceResult.fail("Duration must be a whole number of days", "VALIDATION")

        message = {
            "id": self.new_id(),
            "target": target,
            "title": title,
            "content": content,
            "duration": duration,
            "priority": priority,
            "createdAt": datetime.now().isoformat(),
            "teacherId": self.ctx.current_user.id,
        }

        messages = self.records.get_list(Collection.GENERAL_MESSAGES.value)
        messages.append(message)
        if not self.records.set(Collection.GENERAL_MESSAGES.value, messages):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror("/general-messages", "POST", message)
        return ServiceResult.ok(message)

    async def delete_general_message(self, message_id: Any) -> ServiceResult:
        messages = self.records.get_list(Collection.GENERAL_MESSAGES.value)
        remaining = [m for m in messages if m.get("id") != message_id]
        if len(remaining) == len(messages):
            return ServiceResult.fail("Message not found", "NOT_FOUND")
        if not self.records.set(Collection.GENERAL_MESSAGES.value, remaining):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror(f"/general-messages/{message_id}", "DELETE")
        return ServiceResult.ok(message_id)

    def _general_message_current(self, message: Dict[str, Any], now: datetime) -> bool:
        """True while an announcement is inside its ``duration`` days."""
        try:
            created = datetime.fromisoformat(str(message.get("createdAt")).replace("Z", "+00:00"))
            days = float(message.get("duration", 0))
        except (TypeError, ValueError):
            return False
        if created.tzinfo is not None:
            created = created.astimezone().replace(tzinfo=None)
        return now < created + timedelta(days=days)

    async def mark_general_message_read(self, message_id: Any) -> ServiceResult:
        """Remember that the current student has read an announcement."""
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        key = read_general_messages_key(self.ctx.current_user.id)
        read = self.records.get_list(key)
        if message_id not in read:
            read.append(message_id)
            if not self.records.set(key, read):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(message_id)

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def student_notifications(self) -> ServiceResult:
        """
        The current student's notification feed, newest first.

        Personal notifications are merged with the announcements currently
        targeted at the student's grade. Announcement entries carry the id
        ``gm_<message id>``.
        """
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        user = self.ctx.current_user
        grade = user.extra.get("grade")
        personal = [
            n for n in self.records.get_list(Collection.STUDENT_NOTIFICATIONS.value)
            if n.get("studentId") == user.id
        ]

        now = datetime.now()
        read = set(self.records.get_list(read_general_messages_key(user.id)))
        general = [
            {
                "id": f"gm_{m.get('id')}",
                "type": "general",
                "title": m.get("title"),
                "message": m.get("content"),
                "timestamp": m.get("createdAt"),
                "isRead": m.get("id") in read,
                "canReply": False,
            }
            for m in self.records.get_list(Collection.GENERAL_MESSAGES.value)
            if m.get("target") in ("all", grade) and self._general_message_current(m, now)
        ]

        feed = sorted(personal + general, key=lambda n: str(n.get("timestamp") or ""), reverse=True)
        return ServiceResult.ok(feed)

    async def unread_notification_count(self) -> int:
        """Unread entries in the current student's feed; 0 for anyone else."""
        feed = await self.student_notifications()
        if not feed.success:
            return 0
        return sum(1 for n in feed.data if not n.get("isRead"))

    async def mark_notification_read(self, notification_id: Any) -> ServiceResult:
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        notifications = self.records.get_list(Collection.STUDENT_NOTIFICATIONS.value)
        index = self.find_index(notifications, notification_id)
        if index == -1 or notifications[index].get("studentId") != self.ctx.current_user.id:
            return ServiceResult.fail("Notification not found", "NOT_FOUND")

        notifications[index]["isRead"] = True
        if not self.records.set(Collection.STUDENT_NOTIFICATIONS.value, notifications):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(notifications[index])

    async def teacher_notifications(self, unread_only: bool = False) -> ServiceResult:
        """Exam results and other events reported to the teacher, newest first."""
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied

        notifications = self.records.get_list(Collection.TEACHER_NOTIFICATIONS.value)
        if unread_only:
            notifications = [n for n in notifications if not n.get("isRead")]
        return ServiceResult.ok(
            sorted(notifications, key=lambda n: str(n.get("timestamp") or ""), reverse=True)
        )
