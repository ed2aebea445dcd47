# =============================================================================
# tests/integration/test_services.py
# Integration Tests for the domain services over real stores
# =============================================================================

import asyncio
from datetime import datetime, timedelta
from unittest.mock import patch

import pandas as pd
import pytest

from edu_core.models import Upload, UserType


def run(ctx, scenario):
    """Start the context, run the scenario, always shut down"""
    async def main():
        await ctx.start()
        try:
            return await scenario()
        finally:
            await ctx.shutdown()

    return asyncio.run(main())


@pytest.fixture
def offline(fake_remote):
    fake_remote.offline = True
    return fake_remote


class TestLessons:
    """Test lesson files through create, update and delete"""

    def test_create_stores_every_upload(self, app_context, offline, exam_questions):
        uploads = {
            "coverImage": Upload("cover.png", b"png", "image/png"),
            "videoFile": Upload("intro.mp4", b"mp4", "video/mp4"),
            "pdfFile": Upload("notes.pdf", b"pdf", "application/pdf"),
        }

        async def scenario():
            result = await app_context.lessons.save_lesson(
                "Algebra", 50, "Linear equations", "first", exam_questions, uploads,
            )
            video = await app_context.blobs.get(result.data["videoFile"])
            return result, video

        result, video = run(app_context, scenario)

        lesson = result.data
        assert result.success
        assert result.metadata["failed_fields"] == []
        assert lesson["coverImage"].startswith(f"lesson_{lesson['id']}_cover_")
        assert lesson["homeworkFile"] is None
        assert video == b"mp4"
        assert app_context.records.get("lessons") == [lesson]

    def test_video_replacement(self, app_context, offline, exam_questions):
        """Replacing v1 with v2 leaves only v2 in the blob store"""
        async def scenario():
            created = await app_context.lessons.save_lesson(
                "Algebra", 50, "Linear equations", "first", exam_questions,
                {"videoFile": Upload("v1.mp4", b"version-1")},
            )
            lesson_id = created.data["id"]
            v1_key = created.data["videoFile"]

            updated = await app_context.lessons.save_lesson(
                "Algebra", 60, "Linear equations", "first", exam_questions,
                {"videoFile": Upload("v2.mp4", b"version-2")},
                lesson_id=lesson_id,
            )
            v2_key = updated.data["videoFile"]
            return (
                v1_key,
                v2_key,
                await app_context.blobs.get(v1_key),
                await app_context.blobs.get(v2_key),
                updated,
            )

        v1_key, v2_key, v1_data, v2_data, updated = run(app_context, scenario)

        assert v1_key != v2_key
        assert v1_data is None
        assert v2_data == b"version-2"
        stored = app_context.records.get("lessons")[0]
        assert stored["videoFile"] == v2_key
        assert stored["price"] == 60.0
        assert updated.metadata["failed_fields"] == []

    def test_delete_removes_lesson_files(self, app_context, offline, exam_questions):
        async def scenario():
            created = await app_context.lessons.save_lesson(
                "Geometry", 70, "Triangles", "second", exam_questions,
                {
                    "coverImage": Upload("c.png", b"c"),
                    "homeworkFile": Upload("hw.pdf", b"hw"),
                    "homeworkSolutionVideo": Upload("sol.mp4", b"sol"),
                },
            )
            deleted = await app_context.lessons.delete_lesson(str(created.data["id"]))
            return deleted, await app_context.blobs.keys()

        deleted, keys = run(app_context, scenario)

        assert deleted.success
        assert deleted.metadata["unreleased"] == []
        assert keys == []
        assert app_context.records.get("lessons") == []

    def test_remote_id_is_adopted(self, app_context, fake_remote, exam_questions):
        fake_remote.serve_catalog()
        fake_remote.route("POST", "/lessons", 201, {"lesson": {"id": 9001}})

        async def scenario():
            return await app_context.lessons.save_lesson(
                "Algebra", 50, "Linear equations", "first", exam_questions,
            )

        result = run(app_context, scenario)

        assert result.data["id"] == 9001
        assert [lesson["id"] for lesson in app_context.records.get("lessons")] == [9001]

    def test_validation(self, app_context, offline):
        async def scenario():
            no_questions = await app_context.lessons.save_lesson("A", 10, "B", "first", [])
            bad_field = await app_context.lessons.save_lesson(
                "A", 10, "B", "first", [{"q": 1}], {"posterImage": Upload("p.png", b"p")},
            )
            return no_questions, bad_field

        no_questions, bad_field = run(app_context, scenario)

        assert no_questions.error_code == "VALIDATION"
        assert bad_field.error_code == "VALIDATION"
        assert app_context.records.get("lessons") is None

    def test_subscription_image_lifecycle(self, app_context, offline):
        async def scenario():
            created = await app_context.lessons.create_subscription(
                "Monthly", "All first-grade lessons", 200, 30, "first", Upload("sub.png", b"img"),
            )
            before = await app_context.blobs.keys()
            await app_context.lessons.delete_subscription(created.data["id"])
            return created, before, await app_context.blobs.keys()

        created, before, after = run(app_context, scenario)

        assert before == [created.data["image"]]
        assert after == []

    def test_lessons_for_grade(self, app_context):
        app_context.records.set("lessons", [
            {"id": 1, "grade": "first", "isActive": True},
            {"id": 2, "grade": "second", "isActive": True},
            {"id": 3, "grade": "all"},
            {"id": 4, "grade": "first", "isActive": False},
        ])

        visible = app_context.lessons.lessons_for_grade("first")

        assert [lesson["id"] for lesson in visible] == [1, 3]

    def test_exam_result_notifies_teacher(self, app_context, offline, student):
        questions = [
            {"question": "2 + 2", "options": ["3", "4"], "correctAnswer": "1"},
            {"question": "3 + 3", "options": ["6", "7"], "correctAnswer": 0},
            {"question": "5 - 1", "options": ["4", "3"], "correctAnswer": 0},
        ]
        app_context.records.set("lessons", [{"id": 1, "title": "Algebra", "examQuestions": questions}])
        app_context.current_user = student

        async def scenario():
            return await app_context.lessons.submit_exam(1, [1, None])

        result = run(app_context, scenario)

        assert result.success
        assert result.data["correctAnswers"] == 1
        assert result.data["score"] == 33
        assert result.data["passed"] is False
        assert result.data["answers"] == [1, -1, -1]
        assert app_context.records.get("examResults") == [result.data]

        notice = app_context.records.get("teacherNotifications")[0]
        assert notice["type"] == "exam_result"
        assert notice["studentName"] == "Sara"
        assert notice["isRead"] is False
        assert app_context.lessons.exam_results(student_id=student.id, lesson_id="1") == [result.data]

    def test_exam_score_boundaries(self, app_context, student):
        questions = [{"question": str(n), "correctAnswer": 0} for n in range(8)]
        app_context.records.set("lessons", [{"id": 1, "title": "Algebra", "examQuestions": questions}])
        app_context.current_user = student

        half = asyncio.run(app_context.lessons.submit_exam(1, [0, 0, 0, 0, 1, 1, 1, 1]))
        eighth = asyncio.run(app_context.lessons.submit_exam(1, [0]))

        assert half.data["score"] == 50
        assert half.data["passed"] is True
        assert eighth.data["score"] == 13


class TestAccounts:
    """Test registration, login and moderation"""

    def test_register_and_login(self, app_context, offline):
        async def scenario():
            registered = await app_context.accounts.register_student(
                "Sara", "S-100", "0100", "pw", "pw", "first",
            )
            duplicate = await app_context.accounts.register_student(
                "Other", "S-100", "0100", "pw", "pw", "first",
            )
            wrong = await app_context.accounts.login_student("Sara", "nope")
            login = await app_context.accounts.login_student("Sara", "pw")
            return registered, duplicate, wrong, login

        registered, duplicate, wrong, login = run(app_context, scenario)

        assert registered.success
        assert duplicate.error_code == "DUPLICATE"
        assert wrong.error_code == "INVALID_CREDENTIALS"
        assert login.success
        assert login.data.type == UserType.STUDENT
        assert len(app_context.records.get("students")) == 1

    def test_registration_is_mirrored(self, app_context, fake_remote):
        fake_remote.serve_catalog()
        fake_remote.route("POST", "/auth/register", 201, {"ok": True})

        async def scenario():
            return await app_context.accounts.register_student(
                "Sara", "S-100", "0100", "pw", "pw", "first",
            )

        run(app_context, scenario)

        body = next(body for method, path, body in fake_remote.calls if path == "/auth/register")
        assert body["fullName"] == "Sara"
        assert body["parentNumber"] == "0100"
        assert body["gradeLevel"] == "first"

    def test_banned_student_cannot_login(self, app_context, offline, support_user):
        async def scenario():
            registered = await app_context.accounts.register_student(
                "Sara", "S-100", "0100", "pw", "pw", "first",
            )
            app_context.current_user = support_user
            await app_context.accounts.ban_student(registered.data["id"], "Sharing account")
            app_context.current_user = None
            return await app_context.accounts.login_student("Sara", "pw")

        result = run(app_context, scenario)

        assert result.error_code == "BANNED"
        assert "Sharing account" in result.error
        log = app_context.records.get("supportActivityLog")
        assert log[0]["action"] == "ban_student"

    def test_support_login_falls_back_to_local_roster(self, app_context, offline):
        async def scenario():
            login = await app_context.accounts.support_login("Support", "12345")
            logout = await app_context.accounts.logout()
            return login, logout

        login, logout = run(app_context, scenario)

        assert login.success
        assert logout.success
        member = app_context.records.get("supportStaff")[0]
        assert member["isOnline"] is False
        assert "lastLogin" in member and "lastLogout" in member
        assert app_context.current_user is None

    def test_support_login_rejected_by_remote(self, app_context, fake_remote):
        fake_remote.serve_catalog()
        fake_remote.route("POST", "/auth/support-login", 401, {"message": "Invalid code"})

        async def scenario():
            return await app_context.accounts.support_login("Support", "12345")

        result = run(app_context, scenario)

        assert result.error_code == "INVALID_CREDENTIALS"
        assert result.error == "Invalid code"
        assert app_context.current_user is None


class TestMessaging:

    def test_question_with_image(self, app_context, offline, student, sample_upload):
        app_context.current_user = student

        async def scenario():
            result = await app_context.messaging.submit_question(
                "Homework", "How do I solve question 3?", sample_upload,
            )
            handle = await app_context.messaging.attachment_handle(result.data)
            return result, handle

        result, handle = run(app_context, scenario)

        assert result.data["imageKey"].startswith(f"question_{student.id}_")
        assert handle.path.read_bytes() == sample_upload.data
        app_context.blobs.release_handle(handle)

    def test_support_chat_marks_read(self, app_context, offline, student, support_user):
        async def scenario():
            app_context.current_user = student
            await app_context.messaging.send_support_message("Hello, my payment is missing")
            app_context.current_user = support_user
            overview = app_context.messaging.chat_overview()
            chat = await app_context.messaging.support_chat(student.id)
            reply = await app_context.messaging.send_chat_reply(student.id, "Checking now")
            return overview, chat, reply

        app_context.records.set("students", [{"id": student.id, "name": student.name}])
        overview, chat, reply = run(app_context, scenario)

        assert overview[0]["unread"] == 1
        assert chat.data[0]["isRead"] is True
        assert reply.data["from"] == "support"
        assert len(app_context.records.get("supportMessages")) == 2

    def test_student_cannot_read_support_chat(self, app_context, offline, student):
        app_context.current_user = student

        async def scenario():
            return await app_context.messaging.support_chat(student.id)

        assert run(app_context, scenario).error_code == "FORBIDDEN"

    def test_teacher_reply_notifies_student(self, app_context, offline, student, teacher):
        async def scenario():
            app_context.current_user = student
            question = await app_context.messaging.submit_question("Homework", "Question 3?")
            app_context.current_user = teacher
            reply = await app_context.messaging.reply_to_question(question.data["id"], "See page 4")
            app_context.current_user = student
            feed = await app_context.messaging.student_notifications()
            return question, reply, feed

        question, reply, feed = run(app_context, scenario)

        stored = app_context.records.get("studentMessages")[0]
        assert reply.success
        assert stored["replies"] == [reply.data]
        assert stored["isRead"] is True
        assert feed.data[0]["message"] == "See page 4"
        assert feed.data[0]["questionId"] == question.data["id"]

    def test_notification_feed_and_read_marks(self, app_context, student):
        app_context.records.set("studentNotifications", [
            {"id": 1, "studentId": student.id, "type": "teacher", "timestamp": "2024-03-01T09:00:00", "isRead": False},
            {"id": 2, "studentId": 2002, "type": "teacher", "timestamp": "2024-03-02T09:00:00", "isRead": False},
        ])
        app_context.records.set("generalMessages", [
            {"id": 10, "target": "first", "title": "Exam", "content": "Sunday",
             "createdAt": datetime.now().isoformat(), "duration": 7},
            {"id": 11, "target": "second", "title": "Other grade", "content": "-",
             "createdAt": datetime.now().isoformat(), "duration": 7},
            {"id": 12, "target": "all", "title": "Old", "content": "-",
             "createdAt": (datetime.now() - timedelta(days=9)).isoformat(), "duration": 7},
        ])
        app_context.current_user = student
        messaging = app_context.messaging

        async def scenario():
            before = await messaging.student_notifications()
            unread_before = await messaging.unread_notification_count()
            await messaging.mark_notification_read(1)
            await messaging.mark_general_message_read(10)
            await messaging.mark_general_message_read(10)
            other = await messaging.mark_notification_read(2)
            return before, unread_before, await messaging.unread_notification_count(), other

        before, unread_before, unread_after, other = asyncio.run(scenario())

        assert [n["id"] for n in before.data] == ["gm_10", 1]
        assert unread_before == 2
        assert unread_after == 0
        assert other.error_code == "NOT_FOUND"
        assert app_context.records.get(f"readGeneralMessages_{student.id}") == [10]

    def test_teacher_sees_unread_notifications(self, app_context, teacher):
        app_context.records.set("teacherNotifications", [
            {"id": 1, "type": "exam_result", "timestamp": "2024-03-01T09:00:00", "isRead": True},
            {"id": 2, "type": "exam_result", "timestamp": "2024-03-02T09:00:00", "isRead": False},
        ])
        app_context.current_user = teacher

        result = asyncio.run(app_context.messaging.teacher_notifications(unread_only=True))

        assert [n["id"] for n in result.data] == [2]


class TestWallet:

    def test_transfer_request_with_receipt(self, app_context, offline, student, sample_upload):
        app_context.current_user = student

        async def scenario():
            result = await app_context.wallet.request_funds(
                100, 1, "TX-55", "10:30", sample_upload, "Top-up",
            )
            handle = await app_context.wallet.receipt_handle(result.data["id"])
            return result, handle

        result, handle = run(app_context, scenario)

        assert result.data["status"] == "pending"
        assert result.data["receiptImageKey"].startswith(f"receipt_{student.id}_")
        assert handle is not None
        app_context.blobs.release_handle(handle)

    def test_purchases_and_transactions(self, app_context, offline, student):
        app_context.records.set("lessons", [{"id": 1, "title": "Algebra", "price": 50}])
        app_context.records.set("subscriptions", [{"id": 2, "name": "Monthly", "price": 200, "duration": 30}])
        app_context.current_user = student

        async def scenario():
            lesson = await app_context.wallet.record_lesson_purchase(1)
            subscription = await app_context.wallet.record_subscription_purchase(2)
            return lesson, subscription

        lesson, subscription = run(app_context, scenario)

        assert lesson.success and subscription.success
        assert subscription.data["expiryDate"] > subscription.data["purchaseDate"]

        frame = app_context.wallet.transactions_frame(student.id)
        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == 2
        assert set(frame["type"]) == {"lesson", "subscription"}
        assert frame["timestamp"].is_monotonic_decreasing

    def test_background_replacement(self, app_context, offline, teacher):
        app_context.current_user = teacher

        async def scenario():
            await app_context.wallet.set_custom_background(Upload("a.png", b"a"))
            first = app_context.records.get("customBackground")["imageKey"]
            await app_context.wallet.set_custom_background(Upload("b.png", b"b"), opacity=0.5)
            return first, await app_context.blobs.keys()

        first, keys = run(app_context, scenario)

        background = app_context.records.get("customBackground")
        assert keys == [background["imageKey"]]
        assert first not in keys
        assert background["opacity"] == 0.5

    def test_payment_method_password_check(self, app_context, offline, teacher):
        app_context.current_user = teacher

        async def scenario():
            added = await app_context.wallet.add_payment_method("Wallet", "0100", "secret")
            wrong = await app_context.wallet.delete_payment_method(added.data["id"], "guess")
            right = await app_context.wallet.delete_payment_method(added.data["id"], "secret")
            return wrong, right

        wrong, right = run(app_context, scenario)

        assert wrong.error_code == "INVALID_CREDENTIALS"
        assert right.success
        assert app_context.records.get("paymentMethods") == []

    def test_book_order(self, app_context, offline, student):
        app_context.records.set("books", [{"id": 5, "name": "Maths workbook", "price": 40}])
        app_context.current_user = student

        async def scenario():
            return await app_context.wallet.order_book(5, "Sara Ali", "0100", "12 Nile St", "Al Shorouk")

        result = run(app_context, scenario)

        assert result.success
        order = app_context.records.get("bookOrders")[0]
        assert order["status"] == "pending"
        assert order["bookName"] == "Maths workbook"
        assert order["preferredBookstore"] == "Al Shorouk"
        assert app_context.wallet.book_orders(student.id) == [order]
        transaction = app_context.records.get("transactions")[0]
        assert (transaction["type"], transaction["amount"], transaction["status"]) == ("book", 40, "completed")


class TestLocalWriteFailures:
    """A failed ledger or roster save is reported, not hidden"""

    @staticmethod
    def failing(records, collection):
        real_set = records.set

        def set_(name, value):
            return False if name == collection else real_set(name, value)

        return patch.object(records, "set", side_effect=set_)

    def test_lesson_purchase_without_ledger_entry(self, app_context, student):
        app_context.records.set("lessons", [{"id": 1, "title": "Algebra", "price": 50}])
        app_context.current_user = student

        with self.failing(app_context.records, "transactions"):
            result = asyncio.run(app_context.wallet.record_lesson_purchase(1))

        assert result.error_code == "WRITE_FAILED"
        assert app_context.records.get("transactions") is None

    def test_subscription_purchase_without_ledger_entry(self, app_context, student):
        app_context.records.set("subscriptions", [{"id": 2, "name": "Monthly", "price": 200, "duration": 30}])
        app_context.current_user = student

        with self.failing(app_context.records, "transactions"):
            result = asyncio.run(app_context.wallet.record_subscription_purchase(2))

        assert result.error_code == "WRITE_FAILED"

    def test_support_login_roster_not_saved(self, app_context, offline):
        async def scenario():
            with self.failing(app_context.records, "supportStaff"):
                return await app_context.accounts.support_login("Support", "12345")

        result = run(app_context, scenario)

        assert result.error_code == "WRITE_FAILED"
        assert app_context.current_user is None

    def test_logout_still_ends_session(self, app_context, offline):
        async def scenario():
            await app_context.accounts.support_login("Support", "12345")
            with self.failing(app_context.records, "supportStaff"):
                return await app_context.accounts.logout()

        result = run(app_context, scenario)

        assert result.error_code == "WRITE_FAILED"
        assert app_context.current_user is None

    def test_ban_by_support_without_activity_entry(self, app_context, support_user):
        app_context.records.set("students", [{"id": 7, "name": "Omar"}])
        app_context.current_user = support_user

        with self.failing(app_context.records, "supportActivityLog"):
            result = asyncio.run(app_context.accounts.ban_student(7, "Sharing account"))

        assert result.error_code == "WRITE_FAILED"
        assert app_context.records.get("supportActivityLog") is None
