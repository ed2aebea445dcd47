# =============================================================================
# edu_core/services/wallet_service.py
# Payment methods, transfer requests, purchases and the custom background
# =============================================================================

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from edu_core.errors import WriteFailed
from edu_core.models import Collection, Upload, UserType
from edu_core.offline.blob_store import BlobHandle
from edu_core.utils.ids import now_ms
from .base_service import BaseService, ServiceResult

DEFAULT_BACKGROUND_OPACITY = 0.3


class WalletService(BaseService):
    """
    Money-related records.

    Only records are kept here (requests, purchases, transactions); balances
    are not recalculated.
    """

    # =========================================================================
    # PAYMENT METHODS
    # =========================================================================

    async def add_payment_method(self, name: str, number: str, password: str) -> ServiceResult:
        """Add a wallet/account students can transfer money to."""
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied
        name, number, password = (name or "").strip(), (number or "").strip(), (password or "").strip()
        if not name or not number or not password:
            return ServiceResult.fail("Please fill in all fields", "VALIDATION")

        method = {"id": self.new_id(), "name": name, "number": number, "password": password}
        methods = self.records.get_list(Collection.PAYMENT_METHODS.value)
        methods.append(method)
        if not self.records.set(Collection.PAYMENT_METHODS.value, methods):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror("/payment-methods", "POST", method)
        return ServiceResult.ok(method)

    async def delete_payment_method(self, method_id: Any, control_password: str) -> ServiceResult:
        """Remove a payment method; its control password must match."""
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied

        methods = self.records.get_list(Collection.PAYMENT_METHODS.value)
        index = self.find_index(methods, method_id)
        if index == -1:
            return ServiceResult.fail("Payment method not found", "NOT_FOUND")
        if methods[index].get("password") != control_password:
            return ServiceResult.fail("Incorrect control password", "INVALID_CREDENTIALS")

        del methods[index]
        if not self.records.set(Collection.PAYMENT_METHODS.value, methods):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        await self.mirror(f"/payment-methods/{method_id}", "DELETE")
        return ServiceResult.ok(method_id)

    # =========================================================================
    # TRANSFERS AND PURCHASES
    # =========================================================================

    async def request_funds(
        self,
        amount: Any,
        payment_method_id: Any,
        transaction_number: str,
        transfer_time: str,
        receipt: Optional[Upload],
        message: str = "",
    ) -> ServiceResult:
        """
        File a top-up request with a photo of the transfer receipt.

        The request waits (status "pending") for support to review it.
        """
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            amount = 0.0
        if amount <= 0:
            return ServiceResult.fail("Please enter a valid amount", "VALIDATION")
        if not payment_method_id:
            return ServiceResult.fail("Please choose a payment method", "VALIDATION")
        if not (transaction_number or "").strip():
            return ServiceResult.fail("Please enter the transaction number", "VALIDATION")
        if not transfer_time:
            return ServiceResult.fail("Please enter the transfer time", "VALIDATION")
        if receipt is None:
            return ServiceResult.fail("Please attach the transfer receipt", "VALIDATION")

        user = self.ctx.current_user
        receipt_key = await self.references.store_upload(receipt, f"receipt_{user.id}_{now_ms()}")
        if receipt_key is None:
            return ServiceResult.fail("Could not save the receipt image", "WRITE_FAILED")

        request = {
            "id": self.new_id(),
            "studentId": user.id,
            "studentName": user.name,
            "amount": amount,
            "paymentMethodId": payment_method_id,
            "transactionNumber": transaction_number.strip(),
            "transferTime": transfer_time,
            "message": (message or "").strip(),
            "receiptImageKey": receipt_key,
            "status": "pending",
            "timestamp": datetime.now().isoformat(),
        }

        transfer_requests = self.records.get_list(Collection.TRANSFER_REQUESTS.value)
        transfer_requests.append(request)
        if not self.records.set(Collection.TRANSFER_REQUESTS.value, transfer_requests):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(request)

    async def receipt_handle(self, request_id: Any) -> Optional[BlobHandle]:
        """Display handle for a transfer request's receipt image."""
        transfer_requests = self.records.get_list(Collection.TRANSFER_REQUESTS.value)
        index = self.find_index(transfer_requests, request_id)
        if index == -1:
            return None
        return await self.ctx.blobs.resolve_to_handle(transfer_requests[index].get("receiptImageKey"))

    def add_transaction_record(self, transaction: Dict[str, Any], status: str = "pending") -> Dict[str, Any]:
        """
        Append a transaction to the ledger and return the stored entry.

        Raises:
            WriteFailed: If the ledger could not be saved
        """
        entry = dict(transaction)
        entry.update({
            "id": self.new_id(),
            "status": status,
            "timestamp": datetime.now().isoformat(),
        })
        with self.records.edit(Collection.TRANSACTIONS.value) as transactions:
            transactions.append(entry)
        return entry

    async def record_lesson_purchase(self, lesson_id: Any) -> ServiceResult:
        """Record that the current student bought a lesson."""
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        lessons = self.records.get_list(Collection.LESSONS.value)
        index = self.find_index(lessons, lesson_id)
        if index == -1:
            return ServiceResult.fail("Lesson not found", "NOT_FOUND")
        lesson = lessons[index]

        user = self.ctx.current_user
        purchase = {
            "id": self.new_id(),
            "studentId": user.id,
            "lessonId": lesson["id"],
            "purchaseDate": datetime.now().isoformat(),
            "price": lesson.get("price", 0),
        }
        purchases = self.records.get_list(Collection.PURCHASED_LESSONS.value)
        purchases.append(purchase)
        if not self.records.set(Collection.PURCHASED_LESSONS.value, purchases):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        try:
            self.add_transaction_record({
                "studentId": user.id,
                "studentName": user.name,
                "amount": lesson.get("price", 0),
                "type": "lesson",
                "description": f"Lesson purchase: {lesson.get('title')}",
            }, status="completed")
        except WriteFailed:
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(purchase)

    async def record_subscription_purchase(self, subscription_id: Any) -> ServiceResult:
        """Record a subscription purchase; it expires after its duration in days."""
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied

        subscriptions = self.records.get_list(Collection.SUBSCRIPTIONS.value)
        index = self.find_index(subscriptions, subscription_id)
        if index == -1:
            return ServiceResult.fail("Subscription not found", "NOT_FOUND")
        subscription = subscriptions[index]

        user = self.ctx.current_user
        now = datetime.now()
        purchase = {
            "id": self.new_id(),
            "studentId": user.id,
            "subscriptionId": subscription["id"],
            "purchaseDate": now.isoformat(),
            "price": subscription.get("price", 0),
            "expiryDate": (now + timedelta(days=int(subscription.get("duration", 0)))).isoformat(),
        }
        purchases = self.records.get_list(Collection.PURCHASED_SUBSCRIPTIONS.value)
        purchases.append(purchase)
        if not self.records.set(Collection.PURCHASED_SUBSCRIPTIONS.value, purchases):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        try:
            self.add_transaction_record({
                "studentId": user.id,
                "studentName": user.name,
                "amount": subscription.get("price", 0),
                "type": "subscription",
                "description": f"Subscription: {subscription.get('name')}",
            }, status="completed")
        except WriteFailed:
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(purchase)

    async def order_book(
        self,
        book_id: Any,
        full_name: str,
        phone: str,
        address: str,
        preferred_bookstore: str = "",
    ) -> ServiceResult:
        """
        Order a printed book for delivery.

        The order waits (status "pending") for the teacher to ship it. The
        ledger gets a completed "book" transaction.
        """
        denied = self.require_user(UserType.STUDENT)
        if denied is not None:
            return denied
        full_name, phone, address = (full_name or "").strip(), (phone or "").strip(), (address or "").strip()
        if not full_name or not phone or not address:
            return ServiceResult.fail("Please fill in all required fields", "VALIDATION")

        books = self.records.get_list(Collection.BOOKS.value)
        index = self.find_index(books, book_id)
        if index == -1:
            return ServiceResult.fail("Book not found", "NOT_FOUND")
        book = books[index]

        user = self.ctx.current_user
        order = {
            "id": self.new_id(),
            "studentId": user.id,
            "studentName": user.name,
            "bookId": book["id"],
            "bookName": book.get("name"),
            "price": book.get("price", 0),
            "fullName": full_name,
            "phone": phone,
            "address": address,
            "preferredBookstore": (preferred_bookstore or "").strip(),
            "status": "pending",
            "timestamp": datetime.now().isoformat(),
        }
        orders = self.records.get_list(Collection.BOOK_ORDERS.value)
        orders.append(order)
        if not self.records.set(Collection.BOOK_ORDERS.value, orders):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")

        try:
            self.add_transaction_record({
                "studentId": user.id,
                "studentName": user.name,
                "amount": book.get("price", 0),
                "type": "book",
                "description": f"Book order: {book.get('name')}",
            }, status="completed")
        except WriteFailed:
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(order)

    def book_orders(self, student_id: Any = None) -> List[Dict[str, Any]]:
        """Book orders, optionally for one student."""
        orders = self.records.get_list(Collection.BOOK_ORDERS.value)
        if student_id is None:
            return orders
        return [order for order in orders if order.get("studentId") == student_id]

    def transactions_frame(self, student_id: Any = None) -> pd.DataFrame:
        """
        Transactions as a DataFrame, newest first.

        Args:
            student_id: Restrict to one student
        """
        df = self.records.to_dataframe(Collection.TRANSACTIONS.value)
        if df.empty:
            return df
        if student_id is not None and "studentId" in df.columns:
            df = df[df["studentId"] == student_id]
        if "timestamp" in df.columns:
            df = df.assign(timestamp=pd.to_datetime(df["timestamp"], errors="coerce"))
            df = df.sort_values("timestamp", ascending=False)
        return df.reset_index(drop=True)

    # =========================================================================
    # CUSTOM BACKGROUND
    # =========================================================================

    async def set_custom_background(
        self,
        image: Upload,
        opacity: float = DEFAULT_BACKGROUND_OPACITY,
    ) -> ServiceResult:
        """Replace the app background picture; the previous picture is removed."""
        denied = self.require_user(UserType.TEACHER)
        if denied is not None:
            return denied
        if image is None:
            return ServiceResult.fail("Please choose an image", "VALIDATION")

        background = self.records.get(Collection.CUSTOM_BACKGROUND.value) or {}
        replaced = await self.references.replace_reference(background, "imageKey", image, "background")
        if not replaced:
            return ServiceResult.fail("Error saving file.", "WRITE_FAILED")

        background["opacity"] = opacity
        background["updatedAt"] = datetime.now().isoformat()
        if not self.records.set(Collection.CUSTOM_BACKGROUND.value, background):
            return ServiceResult.fail("Error saving data.", "WRITE_FAILED")
        return ServiceResult.ok(background)

    async def background_handle(self) -> Optional[BlobHandle]:
        """Display handle for the custom background, or None."""
        background = self.records.get(Collection.CUSTOM_BACKGROUND.value) or {}
        return await self.ctx.blobs.resolve_to_handle(background.get("imageKey"))
