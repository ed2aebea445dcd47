# =============================================================================
# edu_core/services/account_service.py
# Student accounts, support roster, login/logout and moderation
# =============================================================================

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from edu_core.errors import RemoteRequestFailed, WriteFailed
from edu_core.models import Collection, UserSession, UserType
from .base_service import BaseService, ServiceResult

DEFAULT_SUPPORT_STAFF = {
    "id": "support_1",
    "name": "Support",
    "code": "12345",
    "isOnline": False,
}


class AccountService(BaseService):
    """
    Account operations backed by the ``students`` and ``supportStaff``
    collections.
    """

    # =========================================================================
    # STUDENTS
    # =========================================================================

    async def register_student(
        self,
        name: str,
        student_number: str,
        parent_phone: str,
        password: str,
        confirm_password: str,
        grade: str,
    ) -> ServiceResult:
        """
        Register a new student locally and mirror the registration.

        Duplicate names or student numbers are rejected before anything is
        written.
        """
        name, student_number = name.strip(), student_number.strip()
        parent_phone, password = parent_phone.strip(), password.strip()
        if not all([name, student_number, parent_phone, password, confirm_password, grade]):
            return ServiceResult.fail("Please fill in all fields", "VALIDATION")
        if password != confirm_password.strip():
            return ServiceResult.fail("Passwords do not match", "VALIDATION")

        students = self.records.get_list(Collection.STUDENTS.value)
        if any(s.get("name") == name or s.get("studentNumber") == student_number for s in students):
            return ServiceResult.fail(
                "A student with the same name or student number already exists",
                "DUPLICATE",
            )

        now = datetime.now().isoformat()
        student = {
            "id": self.new_id(),
            "name": name,
            "studentNumber": student_number,
            "parentPhone": parent_phone,
            "password": password,
            "grade": grade,
            "balance": 0,
            "points": 0,
            "registrationDate": now,
            "lastActivity": now,
            "isBanned": False,
        }

        with self.log_operation(f"Registering student {name}"):
            students.append(student)
            if not self.records.set(Collection.STUDENTS.value, students):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror("/auth/register", "POST", {
            "fullName": name,
            "studentNumber": student_number,
            "parentNumber": parent_phone,
            "password": password,
            "gradeLevel": grade,
            "balance": 0,
            "points": 0,
        })
        return ServiceResult.ok(student)

    async def login_student(self, name: str, password: str) -> ServiceResult:
        """Log a student in against the local roster."""
        name, password = name.strip(), password.strip()
        if not name or not password:
            return ServiceResult.fail("Please fill in all fields", "VALIDATION")

        students = self.records.get_list(Collection.STUDENTS.value)
        student = next(
            (s for s in students if s.get("name") == name and s.get("password") == password),
            None,
        )
        if student is None:
            return ServiceResult.fail("Invalid login details", "INVALID_CREDENTIALS")

        if student.get("isBanned"):
            return ServiceResult.fail(
                f"Your account has been banned. Reason: {student.get('banReason') or 'unspecified'}",
                "BANNED",
                metadata={"bannedAt": student.get("bannedAt")},
            )

        student["lastActivity"] = datetime.now().isoformat()
        self.records.set(Collection.STUDENTS.value, students)

        self.ctx.set_current_user(UserSession(
            id=student["id"],
            name=student["name"],
            type=UserType.STUDENT,
            extra={
                "grade": student.get("grade"),
                "studentNumber": student.get("studentNumber"),
                "parentPhone": student.get("parentPhone"),
            },
        ))
        return ServiceResult.ok(self.ctx.current_user)

    def find_students(
        self,
        search: str = "",
        grade: str = "all",
        status: str = "all",
    ) -> List[Dict[str, Any]]:
        """
        Filter the student roster.

        Args:
            search: Case-insensitive name match or student number substring
            grade: Grade code or "all"
            status: "active", "banned" or "all"
        """
        students = self.records.get_list(Collection.STUDENTS.value)
        term = search.strip().lower()
        if term:
            students = [
                s for s in students
                if term in str(s.get("name", "")).lower() or term in str(s.get("studentNumber", ""))
            ]
        if grade != "all":
            students = [s for s in students if s.get("grade") == grade]
        if status == "banned":
            students = [s for s in students if s.get("isBanned")]
        elif status == "active":
            students = [s for s in students if not s.get("isBanned")]
        return students

    async def ban_student(self, student_id: Any, reason: str) -> ServiceResult:
        """Ban a student, recording who did it and why."""
        denied = self.require_user(UserType.TEACHER, UserType.SUPPORT)
        if denied is not None:
            return denied
        if not reason or not reason.strip():
            return ServiceResult.fail("A ban reason is required", "VALIDATION")

        students = self.records.get_list(Collection.STUDENTS.value)
        index = self.find_index(students, student_id)
        if index == -1:
            return ServiceResult.fail("Student not found", "NOT_FOUND")

        user = self.ctx.current_user
        students[index].update({
            "isBanned": True,
            "banReason": reason.strip(),
            "bannedAt": datetime.now().isoformat(),
            "bannedBy": {"id": user.id, "name": user.name},
        })
        if not self.records.set(Collection.STUDENTS.value, students):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        if user.type == UserType.SUPPORT:
            if not self.log_support_activity("ban_student", {"studentId": student_id, "reason": reason.strip()}):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(students[index])

    async def unban_student(self, student_id: Any) -> ServiceResult:
        denied = self.require_user(UserType.TEACHER, UserType.SUPPORT)
        if denied is not None:
            return denied

        students = self.records.get_list(Collection.STUDENTS.value)
        index = self.find_index(students, student_id)
        if index == -1:
            return ServiceResult.fail("Student not found", "NOT_FOUND")

        student = students[index]
        student["isBanned"] = False
        for field in ("banReason", "bannedAt", "bannedBy"):
            student.pop(field, None)
        if not self.records.set(Collection.STUDENTS.value, students):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        if self.ctx.current_user.type == UserType.SUPPORT:
            if not self.log_support_activity("unban_student", {"studentId": student_id}):
                return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(student)

    # =========================================================================
    # SUPPORT STAFF
    # =========================================================================

    async def initialize_support_staff(self) -> bool:
        """Seed the roster with the default support account when empty."""
        staff = self.records.get(Collection.SUPPORT_STAFF.value)
        if staff:
            return False

        default = dict(DEFAULT_SUPPORT_STAFF, createdAt=datetime.now().isoformat())
        self.records.set(Collection.SUPPORT_STAFF.value, [default])
        self.logger.info("Default support staff initialized")
        return True

    async def add_support_staff(self, name: str, code: str) -> ServiceResult:
        name, code = name.strip(), code.strip()
        if not name or not code:
            return ServiceResult.fail("Please fill in all fields", "VALIDATION")

        staff = self.records.get_list(Collection.SUPPORT_STAFF.value)
        if any(s.get("code") == code for s in staff):
            return ServiceResult.fail("Login code already in use", "DUPLICATE")

        member = {
            "id": self.new_id(),
            "name": name,
            "code": code,
            "isOnline": False,
            "createdAt": datetime.now().isoformat(),
        }
        staff.append(member)
        if not self.records.set(Collection.SUPPORT_STAFF.value, staff):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(member)

    async def delete_support_staff(self, staff_id: Any) -> ServiceResult:
        staff = self.records.get_list(Collection.SUPPORT_STAFF.value)
        remaining = [s for s in staff if s.get("id") != staff_id]
        if len(remaining) == len(staff):
            return ServiceResult.fail("Support member not found", "NOT_FOUND")
        if not self.records.set(Collection.SUPPORT_STAFF.value, remaining):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(staff_id)

    async def support_login(self, name: str, code: str) -> ServiceResult:
        """
        Log a support member in.

        The remote decides when sync is enabled. If it cannot be reached (or
        sync is disabled) the local roster is checked instead; an explicit
        rejection from the remote is final.
        """
        name, code = name.strip(), code.strip()
        if not name or not code:
            return ServiceResult.fail("Please fill in all fields", "VALIDATION")

        support: Optional[Dict[str, Any]] = None
        if self.ctx.sync_enabled:
            try:
                response = await self.ctx.client.post("/auth/support-login", {"name": name, "code": code})
                support = (response or {}).get("user")
            except RemoteRequestFailed as e:
                if e.status_code is not None:
                    return ServiceResult.fail(e.message, "INVALID_CREDENTIALS")
                self.logger.warning("Support login falling back to the local roster")

        try:
            with self.records.edit(Collection.SUPPORT_STAFF.value) as staff:
                member = next((s for s in staff if s.get("name") == name and s.get("code") == code), None)
                if support is None:
                    support = member
                if member is not None:
                    member["isOnline"] = True
                    member["lastLogin"] = datetime.now().isoformat()
        except WriteFailed:
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        if not support:
            return ServiceResult.fail("Invalid login details", "INVALID_CREDENTIALS")

        self.ctx.set_current_user(UserSession(
            id=support["id"],
            name=support["name"],
            type=UserType.SUPPORT,
        ))
        return ServiceResult.ok(self.ctx.current_user)

    def log_support_activity(self, action: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Append an entry to the support activity log for the current user.

        Returns:
            True if the entry was saved
        """
        user = self.ctx.current_user
        try:
            with self.records.edit(Collection.SUPPORT_ACTIVITY_LOG.value) as log:
                log.append({
                    "id": self.new_id(),
                    "supportId": user.id if user else None,
                    "supportName": user.name if user else None,
                    "action": action,
                    "details": details or {},
                    "timestamp": datetime.now().isoformat(),
                })
        except WriteFailed:
            return False
        return True

    # =========================================================================
    # SESSION
    # =========================================================================

    async def logout(self) -> ServiceResult:
        """
        End the session; support members are marked offline.

        The session ends even when the roster update cannot be saved; the
        result then carries WRITE_FAILED.
        """
        user = self.ctx.current_user
        if user is None:
            return ServiceResult.fail("Nobody is logged in", "NOT_LOGGED_IN")

        saved = True
        if user.type == UserType.SUPPORT:
            try:
                with self.records.edit(Collection.SUPPORT_STAFF.value) as staff:
                    for member in staff:
                        if member.get("id") == user.id:
                            member["lastLogout"] = datetime.now().isoformat()
                            member["isOnline"] = False
            except WriteFailed:
                saved = False

        self.ctx.clear_current_user()
        if not saved:
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok()
