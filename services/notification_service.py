from config.database import Database
from datetime import datetime


class NotificationService:
    def __init__(self, db: Database):
        self.db = db

    async def send_appointment_status_notification(self, recipient_id: str, appointment_id: str, status: str):
        """Store an in-app notification about an appointment status change"""
        notification = {
            "recipient_id": recipient_id,
            "appointment_id": appointment_id,
            "type": "appointment_status",
            "status": status,
            "message": self._get_status_message(status),
            "created_at": datetime.now(),
            "read": False
        }
        await self.db.notifications.insert_one(notification)

    def _get_status_message(self, status: str) -> str:
        """Get appropriate message based on appointment status"""
        messages = {
            "PENDING": "You have a new appointment request.",
            "CONFIRMED": "Your appointment has been confirmed!",
            "CANCELED": "Your appointment has been cancelled.",
            "RESCHEDULED": "Your appointment has been moved to a new time.",
        }
        return messages.get(status, f"Your appointment status has been updated to {status}.")
