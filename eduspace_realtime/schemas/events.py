"""Domain events that fan out into notifications.

Each event kind is its own model carrying its own payload; ``NotificationEvent``
is the closed union of them, discriminated on ``type``. ``render()`` turns an
event into the title/body/links stored on every recipient's notification row.
"""

from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from eduspace_realtime.models.notification import NotificationType


MESSAGE_PREVIEW_LIMIT = 100


class NotificationContent(BaseModel):

    model_config = ConfigDict(frozen=True)

    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = None
    class_id: Optional[str] = None
    sender_id: Optional[str] = None
    action_type: Optional[str] = None


class _Event(BaseModel):

    model_config = ConfigDict(frozen=True, extra="forbid")

    sender_id: Optional[str] = None
    class_id: Optional[str] = None

    def render(self) -> NotificationContent:
        raise NotImplementedError


def _preview(text: str) -> str:
    if len(text) > MESSAGE_PREVIEW_LIMIT:
        return text[:MESSAGE_PREVIEW_LIMIT] + "..."
    return text


class MessageEvent(_Event):

    type: Literal["message"] = "message"
    conversation_id: str
    sender_id: str
    sender_name: str
    preview: str

    def render(self) -> NotificationContent:
        return NotificationContent(
            type=self.type,
            title=f"New message from {self.sender_name}",
            message=_preview(self.preview),
            related_id=self.conversation_id,
            sender_id=self.sender_id,
            action_type="sent",
        )


class AssignmentEvent(_Event):

    type: Literal["assignment"] = "assignment"
    action: Literal["created", "updated"] = "created"
    assignment_id: str
    assignment_title: str
    due_date: Optional[date] = None
    update_details: Optional[str] = None

    def render(self) -> NotificationContent:
        if self.action == "created":
            title = "New Assignment Posted"
            due = f" - Due {self.due_date.isoformat()}" if self.due_date else ""
            message = f'New assignment: "{self.assignment_title}"{due}'
        else:
            title = "Assignment Updated"
            message = f'"{self.assignment_title}" has been updated: {self.update_details or "details changed"}'
        return NotificationContent(
            type=self.type,
            title=title,
            message=message,
            related_id=self.assignment_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type=self.action,
        )


class ScheduleEvent(_Event):

    type: Literal["schedule"] = "schedule"
    action: Literal["created", "updated"] = "created"
    schedule_id: str
    schedule_title: str
    details: str

    def render(self) -> NotificationContent:
        title = "New Schedule Added" if self.action == "created" else "Schedule Updated"
        return NotificationContent(
            type=self.type,
            title=title,
            message=f"{self.schedule_title}: {self.details}",
            related_id=self.schedule_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type=self.action,
        )


class AccessRequestEvent(_Event):
    """Class invitation lifecycle: sent to a student, reminded, or declined back to the lecturer."""

    type: Literal["access_request"] = "access_request"
    kind: Literal["invited", "pending", "rejected"] = "invited"
    request_id: str
    course_code: str
    class_name: Optional[str] = None
    lecturer_name: Optional[str] = None
    student_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_names(self) -> "AccessRequestEvent":
        if self.kind == "rejected" and not self.student_name:
            raise ValueError("student_name is required for a rejected invitation")
        if self.kind != "rejected" and not self.lecturer_name:
            raise ValueError("lecturer_name is required for an invitation")
        return self

    def render(self) -> NotificationContent:
        class_info = f" - {self.class_name}" if self.class_name else ""
        if self.kind == "invited":
            title = "Class Access Request"
            message = f"{self.lecturer_name} has invited you to join {self.course_code}"
        elif self.kind == "pending":
            title = "Pending Class Invitation"
            message = f"{self.lecturer_name} has invited you to join {self.course_code}{class_info}. Click to review and respond."
        else:
            title = "Class Invitation Rejected"
            message = f"{self.student_name} has declined the invitation to join {self.course_code}{class_info}"
        return NotificationContent(
            type=self.type,
            title=title,
            message=message,
            related_id=self.request_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type=self.kind,
        )


class SubmissionEvent(_Event):

    type: Literal["submission"] = "submission"
    kind: Literal["assignment", "quiz"] = "assignment"
    item_id: str
    item_title: str
    student_name: str

    def render(self) -> NotificationContent:
        if self.kind == "assignment":
            title = "New Assignment Submission"
            message = f'{self.student_name} submitted "{self.item_title}"'
        else:
            title = "New Quiz Submission"
            message = f'{self.student_name} completed "{self.item_title}"'
        return NotificationContent(
            type=self.type,
            title=title,
            message=message,
            related_id=self.item_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type="submitted",
        )


class GradeEvent(_Event):

    type: Literal["grade"] = "grade"
    assignment_id: str
    assignment_title: str
    grade: str

    def render(self) -> NotificationContent:
        return NotificationContent(
            type=self.type,
            title="Grade Posted",
            message=f'Your grade for "{self.assignment_title}" is {self.grade}',
            related_id=self.assignment_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type="graded",
        )


class AnnouncementEvent(_Event):

    type: Literal["announcement"] = "announcement"
    kind: Literal["quiz_published", "quiz_updated", "poll", "class"] = "class"
    related_id: Optional[str] = None
    subject: str
    body: Optional[str] = None

    def render(self) -> NotificationContent:
        if self.kind == "quiz_published":
            title, message, action = "New Quiz Available", f'Quiz "{self.subject}" is now available. Good luck!', "published"
        elif self.kind == "quiz_updated":
            title, message, action = "Quiz Updated", f'The quiz "{self.subject}" has been updated.', "updated"
        elif self.kind == "poll":
            title, message, action = "New Class Poll", f'A new poll: "{self.subject}" is available.', "created"
        else:
            title, message, action = self.subject, self.body or "", "class_announcement"
        return NotificationContent(
            type=self.type,
            title=title,
            message=message,
            related_id=self.related_id,
            class_id=self.class_id,
            sender_id=self.sender_id,
            action_type=action,
        )


NotificationEvent = Annotated[
    Union[
        MessageEvent,
        AssignmentEvent,
        ScheduleEvent,
        AccessRequestEvent,
        SubmissionEvent,
        GradeEvent,
        AnnouncementEvent,
    ],
    Field(discriminator="type"),
]

notification_event_adapter: TypeAdapter = TypeAdapter(NotificationEvent)
