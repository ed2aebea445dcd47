# =============================================================================
# edu_core/services/lesson_service.py
# Lesson and subscription catalog mutations, exam grading
# =============================================================================

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from edu_core.models import (
    LESSON_UPLOAD_SUFFIXES,
    Collection,
    RecordType,
    Upload,
    UserType,
    adopts_remote_id,
)
from .base_service import BaseService, ServiceResult

PASSING_SCORE = 50


def _same_id(left: Any, right: Any) -> bool:
    # Ids arrive as ints locally and as strings from forms
    return left is not None and right is not None and str(left) == str(right)


def _option_index(value: Any) -> int:
    """Chosen or correct option as an int; -1 when missing or unreadable."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


class LessonService(BaseService):
    """
    Create, update and delete lessons and subscriptions.

    Files attached to a lesson are stored through ReferenceLifecycle; the
    lesson record only keeps their keys.
    """

    def _find_lesson(self, lessons: List[Dict[str, Any]], lesson_id: Any) -> Optional[Dict[str, Any]]:
        return next((lesson for lesson in lessons if _same_id(lesson.get("id"), lesson_id)), None)

    @staticmethod
    def _validate(title: str, price: Any, description: str, grade: str,
                  exam_questions: List[Dict[str, Any]]) -> Optional[ServiceResult]:
        if not title or not description or not grade:
            return ServiceResult.fail("Please fill in all required fields", "VALIDATION")
        try:
            price = float(price)
        except (TypeError, ValueError):
            return ServiceResult.fail("Please fill in all required fields", "VALIDATION")
        if price < 0:
            return ServiceResult.fail("Please enter a valid price", "VALIDATION")
        if not exam_questions:
            return ServiceResult.fail("Please add at least one exam question", "VALIDATION")
        return None

    async def save_lesson(
        self,
        title: str,
        price: float,
        description: str,
        grade: str,
        exam_questions: List[Dict[str, Any]],
        uploads: Optional[Dict[str, Upload]] = None,
        lesson_id: Any = None,
        subscription_id: Any = None,
    ) -> ServiceResult:
        """
        Create a lesson, or update the one with ``lesson_id``.

        Args:
            uploads: New files keyed by lesson blob field (``coverImage``,
                ``videoFile``...). On update, fields without a new upload keep
                their current file.

        Returns:
            ServiceResult with the saved lesson; ``metadata["failed_fields"]``
            lists fields whose file could not be stored or replaced
        """
        title, description = (title or "").strip(), (description or "").strip()
        invalid = self._validate(title, price, description, grade, exam_questions)
        if invalid is not None:
            return invalid

        uploads = uploads or {}
        unknown = set(uploads) - set(LESSON_UPLOAD_SUFFIXES)
        if unknown:
            return ServiceResult.fail(f"Unknown lesson file fields: {sorted(unknown)}", "VALIDATION")

        if lesson_id is not None and lesson_id != "":
            return await self._update_lesson(
                lesson_id, title, float(price), description, grade, exam_questions, uploads,
            )
        return await self._create_lesson(
            title, float(price), description, grade, exam_questions, uploads, subscription_id,
        )

    async def _create_lesson(self, title, price, description, grade, exam_questions,
                             uploads, subscription_id) -> ServiceResult:
        new_id = self.new_id()
        lesson: Dict[str, Any] = {
            "id": new_id,
            "title": title,
            "price": price,
            "description": description,
            "grade": grade,
        }
        failed_fields = []
        for field, suffix in LESSON_UPLOAD_SUFFIXES.items():
            upload = uploads.get(field)
            lesson[field] = await self.references.store_upload(upload, f"lesson_{new_id}_{suffix}")
            if upload is not None and lesson[field] is None:
                failed_fields.append(field)
        lesson.update({
            "examQuestions": exam_questions,
            "subscriptionId": subscription_id,
            "isActive": True,
            "createdAt": datetime.now().isoformat(),
        })

        with self.log_operation(f"Creating lesson '{title}'"):
            lessons = self.records.get_list(Collection.LESSONS.value)
            lessons.append(lesson)
            if not self.records.set(Collection.LESSONS.value, lessons):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        response = await self.mirror("/lessons", "POST", lesson)
        remote_id = None
        if isinstance(response, dict) and isinstance(response.get("lesson"), dict):
            remote_id = response["lesson"].get("id")
        if adopts_remote_id(Collection.LESSONS) and remote_id is not None and remote_id != new_id:
            lessons = self.records.get_list(Collection.LESSONS.value)
            stored = self._find_lesson(lessons, new_id)
            if stored is not None:
                stored["id"] = remote_id
                self.records.set(Collection.LESSONS.value, lessons)
            lesson["id"] = remote_id
            self.logger.info(f"Lesson {new_id} adopted remote id {remote_id}")

        return ServiceResult.ok(lesson, metadata={"failed_fields": failed_fields})

    async def _update_lesson(self, lesson_id, title, price, description, grade,
                             exam_questions, uploads) -> ServiceResult:
        lessons = self.records.get_list(Collection.LESSONS.value)
        lesson = self._find_lesson(lessons, lesson_id)
        if lesson is None:
            return ServiceResult.fail("Lesson not found", "NOT_FOUND")

        lesson.update({
            "title": title,
            "price": price,
            "description": description,
            "grade": grade,
            "examQuestions": exam_questions,
            "updatedAt": datetime.now().isoformat(),
        })

        failed_fields = []
        for field, suffix in LESSON_UPLOAD_SUFFIXES.items():
            upload = uploads.get(field)
            if upload is None:
                continue
            replaced = await self.references.replace_reference(
                lesson, field, upload, f"lesson_{lesson['id']}_{suffix}",
            )
            if not replaced:
                failed_fields.append(field)

        with self.log_operation(f"Updating lesson {lesson_id}"):
            if not self.records.set(Collection.LESSONS.value, lessons):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror(f"/lessons/{lesson_id}", "PUT", lesson)
        return ServiceResult.ok(lesson, metadata={"failed_fields": failed_fields})

    async def delete_lesson(self, lesson_id: Any) -> ServiceResult:
        """
        Delete a lesson and every file it references.

        Files go first; a file that cannot be deleted is logged and reported
        in ``metadata["unreleased"]`` but does not block the record removal.
        """
        lessons = self.records.get_list(Collection.LESSONS.value)
        lesson = self._find_lesson(lessons, lesson_id)
        if lesson is None:
            return ServiceResult.fail("Lesson not found", "NOT_FOUND")

        unreleased = await self.references.release_references(lesson, RecordType.LESSON)

        lessons = [item for item in self.records.get_list(Collection.LESSONS.value)
                   if not _same_id(item.get("id"), lesson_id)]
        if not self.records.set(Collection.LESSONS.value, lessons):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror(f"/lessons/{lesson_id}", "DELETE")
        return ServiceResult.ok(lesson_id, metadata={"unreleased": unreleased})

    def lessons_for_grade(self, grade: str) -> List[Dict[str, Any]]:
        """Active lessons visible to a grade ("all" lessons are visible to everyone)."""
        return [
            lesson for lesson in self.records.get_list(Collection.LESSONS.value)
            if lesson.get("isActive", True) and lesson.get("grade") in (grade, "all")
        ]

    # =========================================================================
    # EXAMS
    # =========================================================================

    async def submit_exam(self, lesson_id: Any, answers: List[Optional[int]]) -> ServiceResult:
        """
        Grade a lesson exam, store the result and tell the teacher.

        Args:
            lesson_id: The lesson whose exam was taken
            answers: Chosen option index per question; None or -1 for unanswered

        Returns:
            ServiceResult with the stored exam result
        """
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        lesson = self._find_lesson(self.records.get_list(Collection.LESSONS.value), lesson_id)
        if lesson is None:
            return ServiceResult.fail("Lesson not found", "NOT_FOUND")
        questions = lesson.get("examQuestions") or []
        if not questions:
            return ServiceResult.fail("This lesson has no exam", "VALIDATION")

        chosen = [_option_index(answer) for answer in answers or []]
        chosen += [-1] * (len(questions) - len(chosen))
        correct = sum(
            1 for question, answer in zip(questions, chosen)
            if answer != -1 and answer == _option_index(question.get("correctAnswer"))
        )
        score = int(correct * 100 / len(questions) + 0.5)

        user = self.ctx.current_user
        result = {
            "id": self.new_id(),
            "studentId": user.id,
            "studentName": user.name,
            "lessonId": lesson["id"],
            "lessonTitle": lesson.get("title"),
            "score": score,
            "correctAnswers": correct,
            "totalQuestions": len(questions),
            "answers": chosen[:len(questions)],
            "passed": score >= PASSING_SCORE,
            "timestamp": datetime.now().isoformat(),
        }

        with self.log_operation(f"Recording exam result for lesson {lesson['id']}"):
            results = self.records.get_list(Collection.EXAM_RESULTS.value)
            results.append(result)
            if not self.records.set(Collection.EXAM_RESULTS.value, results):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

            notifications = self.records.get_list(Collection.TEACHER_NOTIFICATIONS.value)
            notifications.append({
                "id": self.new_id(),
                "type": "exam_result",
                "studentName": user.name,
                "score": score,
                "passed": result["passed"],
                "lessonId": lesson["id"],
                "timestamp": result["timestamp"],
                "isRead": False,
            })
            if not self.records.set(Collection.TEACHER_NOTIFICATIONS.value, notifications):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        return ServiceResult.ok(result)

    def exam_results(self, student_id: Any = None, lesson_id: Any = None) -> List[Dict[str, Any]]:
        """Stored exam results, optionally for one student and/or lesson."""
        results = self.records.get_list(Collection.EXAM_RESULTS.value)
        if student_id is not None:
            results = [r for r in results if r.get("studentId") == student_id]
        if lesson_id is not None:
            results = [r for r in results if _same_id(r.get("lessonId"), lesson_id)]
        return results

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def create_subscription(
        self,
        name: str,
        description: str,
        price: float,
        duration: int,
        grade: str = "all",
        image: Optional[Upload] = None,
    ) -> ServiceResult:
        """Create a subscription bundle valid for ``duration`` days."""
        name, description = (name or "").strip(), (description or "").strip()
        if not name or not description:
            return ServiceResult.fail("Please fill in all required fields", "VALIDATION")
        try:
            price, duration = float(price), int(duration)
        except (TypeError, ValueError):
            return ServiceResult.fail("Price and duration must be numbers", "VALIDATION")
        if price < 0 or duration <= 0:
            return ServiceResult.fail("Please enter a valid price and duration", "VALIDATION")

        subscription_id = self.new_id()
        subscription = {
            "id": subscription_id,
            "name": name,
            "description": description,
            "price": price,
            "duration": duration,
            "grade": grade,
            "image": await self.references.store_upload(image, f"subscription_{subscription_id}_image"),
            "isActive": True,
            "createdAt": datetime.now().isoformat(),
        }

        subscriptions = self.records.get_list(Collection.SUBSCRIPTIONS.value)
        subscriptions.append(subscription)
        if not self.records.set(Collection.SUBSCRIPTIONS.value, subscriptions):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror("/subscriptions", "POST", subscription)
        return ServiceResult.ok(subscription)

    async def delete_subscription(self, subscription_id: Any) -> ServiceResult:
        subscriptions = self.records.get_list(Collection.SUBSCRIPTIONS.value)
        subscription = next(
            (s for s in subscriptions if _same_id(s.get("id"), subscription_id)), None,
        )
        if subscription is None:
            return ServiceResult.fail("Subscription not found", "NOT_FOUND")

        unreleased = await self.references.release_references(subscription, RecordType.SUBSCRIPTION)

        remaining = [s for s in self.records.get_list(Collection.SUBSCRIPTIONS.value)
                     if not _same_id(s.get("id"), subscription_id)]
        if not self.records.set(Collection.SUBSCRIPTIONS.value, remaining):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror(f"/subscriptions/{subscription_id}", "DELETE")
        return ServiceResult.ok(subscription_id, metadata={"unreleased": unreleased})
