from datetime import date, datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RsvpStatus = Literal["going", "maybe", "not_going"]
EventStatus = Literal["upcoming", "ongoing", "completed", "cancelled"]
MemberRole = Literal["admin", "co-admin", "member"]
TimeRange = Literal["24h", "7d", "30d", "90d", "day", "week", "month"]


class Community(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    slug: str
    image_url: Optional[str] = None
    created_by: str
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    member_count: int = 0


class CommunityCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = ""
    image_url: Optional[str] = None


class CommunityMember(BaseModel):
    community_id: str
    user_id: str
    role: MemberRole = "member"
    joined_at: datetime


class MemberRoleUpdateRequest(BaseModel):
    role: MemberRole


class CommunityEvent(BaseModel):
    id: str
    community_id: str
    created_by: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    is_online: bool = False
    meeting_url: Optional[str] = None
    capacity: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None
    status: EventStatus = "upcoming"
    ai_generated: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class EventView(CommunityEvent):
    rsvp_count: int = 0
    my_rsvp_status: Optional[RsvpStatus] = None
    spots_left: Optional[int] = None
    is_full: bool = False


class RecurrenceOptions(BaseModel):
    frequency: Literal["daily", "weekly", "monthly"]
    interval: int = Field(default=1, ge=1, le=52)
    until: Optional[date] = None


class EventCreateRequest(BaseModel):
    community_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    is_online: bool = False
    meeting_url: Optional[str] = None
    capacity: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceOptions] = None


class EventUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    is_online: Optional[bool] = None
    meeting_url: Optional[str] = None
    capacity: Optional[int] = None
    tags: Optional[list[str]] = None
    status: Optional[EventStatus] = None
    recurrence: Optional[RecurrenceOptions] = None


class MyEvents(BaseModel):
    owned: list[CommunityEvent] = Field(default_factory=list)
    participating: list[CommunityEvent] = Field(default_factory=list)
    deleted: list[CommunityEvent] = Field(default_factory=list)


class EventSearchHit(BaseModel):
    event: CommunityEvent
    similarity: float = 0.0


class EventRsvp(BaseModel):
    id: str
    event_id: str
    user_id: str
    status: RsvpStatus
    created_at: datetime
    updated_at: datetime


class RsvpRequest(BaseModel):
    status: RsvpStatus


class RsvpResult(BaseModel):
    event_id: str
    user_id: str
    status: RsvpStatus
    attendee_count: int
    capacity: Optional[int] = None
    spots_left: Optional[int] = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _none_as_empty_list(value: Any) -> Any:
    return [] if value is None else value


class ExtractedEventDetails(_CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    suggested_capacity: Optional[int] = None
    suggested_duration: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    is_online: bool = False
    meeting_url: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags_as_empty(cls, value: Any) -> Any:
        return _none_as_empty_list(value)


class AiGeneratedEventDetails(_CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    suggested_tags: list[str] = Field(default_factory=list)
    recommended_capacity: Optional[int] = None
    recommended_duration: Optional[int] = None
    location_suggestions: list[str] = Field(default_factory=list)

    @field_validator("suggested_tags", "location_suggestions", mode="before")
    @classmethod
    def null_lists_as_empty(cls, value: Any) -> Any:
        return _none_as_empty_list(value)


class EventIntentDetails(_CamelModel):
    original_message: str = ""
    extracted_details: ExtractedEventDetails = Field(default_factory=ExtractedEventDetails)
    ai_generated_details: Optional[AiGeneratedEventDetails] = None
    suggested_actions: list[str] = Field(default_factory=list)

    @field_validator("suggested_actions", mode="before")
    @classmethod
    def null_actions_as_empty(cls, value: Any) -> Any:
        return _none_as_empty_list(value)


class EventIntent(_CamelModel):
    type: Literal["event"] = "event"
    priority: str = "medium"
    summary: str = ""
    details: EventIntentDetails = Field(default_factory=EventIntentDetails)


class AdminAlertIntent(_CamelModel):
    type: Literal["admin_alert"] = "admin_alert"
    priority: str = "medium"
    summary: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


IntentPayload = Annotated[Union[EventIntent, AdminAlertIntent], Field(discriminator="type")]


class AdminNotification(BaseModel):
    id: str
    community_id: str
    message_id: Optional[str] = None
    intent_type: str
    intent_details: IntentPayload
    is_read: bool = False
    created_by: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None


class IntentRecordRequest(BaseModel):
    community_id: str
    message_id: Optional[str] = None
    payload: IntentPayload


class ConversionResult(BaseModel):
    event: CommunityEvent
    notification_marked_read: bool
    announcement_posted: bool


class AnnouncementRetryResult(BaseModel):
    retried: int
    posted: int
    still_pending: list[str] = Field(default_factory=list)


class EventValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class CommunityPost(BaseModel):
    id: str
    community_id: str
    user_id: str
    content: str
    created_at: datetime


class UpcomingEventSummary(BaseModel):
    id: str
    title: str
    start_time: datetime
    rsvp_count: int = 0
    capacity: Optional[int] = None


class EventOverview(BaseModel):
    total_events: int
    upcoming_events: int
    past_events: int
    total_attendees: int
    upcoming: list[UpcomingEventSummary] = Field(default_factory=list)


class RsvpBreakdown(BaseModel):
    time_range: TimeRange
    going: int = 0
    maybe: int = 0
    not_going: int = 0
    total: int = 0


class OperationStats(BaseModel):
    operation_type: str
    total: int
    success: int
    success_rate: float


class AiOperationStats(BaseModel):
    time_range: TimeRange
    total_operations: int
    success_rate: float
    by_operation: list[OperationStats] = Field(default_factory=list)


class TopicCount(BaseModel):
    topic: str
    count: int


class SentimentSplit(BaseModel):
    positive: int = 0
    neutral: int = 0
    negative: int = 0


class ChatAnalytics(BaseModel):
    time_range: TimeRange
    message_count: int
    active_users: int
    top_topics: list[TopicCount] = Field(default_factory=list)
    messages_by_hour: list[int] = Field(default_factory=lambda: [0] * 24)
    sentiment: SentimentSplit = Field(default_factory=SentimentSplit)


class ModerationFlag(BaseModel):
    id: str
    community_id: str
    content_type: str
    content_id: str
    reason: str
    status: str
    reporter_id: Optional[str] = None
    created_at: datetime


class ModerationSummary(BaseModel):
    time_range: TimeRange
    total_flags: int
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_content_type: Dict[str, int] = Field(default_factory=dict)
    recent: list[ModerationFlag] = Field(default_factory=list)


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str = "huddle-demo"


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    is_platform_admin: bool = False


class DeviceTokenRegisterRequest(BaseModel):
    device_token: str
    platform: Literal["android", "ios", "web"] = "android"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["event", "community", "admin", "system"] = "system"
    is_read: bool = False
    created_at: datetime
    deep_link: Optional[str] = None
