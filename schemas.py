"""
Database Schemas

MongoDB collection schemas for ReFocus, as Pydantic models.
These schemas validate documents before they are written.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- CoachRequest -> "coachrequest" collection
- GameVersion -> "gameversion" collection

Fields are snake_case in Python and stored camelCase in Mongo
(`create_document` dumps by alias).
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------

Role = Literal["user", "coach", "admin", "developer"]
CoachStatus = Literal["none", "pending", "approved", "rejected"]


class NotificationPreferences(Document):
    email: bool = True
    push: bool = True
    sms: bool = False


class Preferences(Document):
    language: str = Field("en", description="UI language code")
    theme: Literal["light", "dark", "auto"] = "auto"
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)


class User(Document):
    """Identity and authorization root. `coach_status` is the single source of coach state."""
    name: str = Field(..., min_length=2, max_length=100, description="Display name")
    email: str = Field(..., description="Lowercased, unique")
    password: str = Field(..., description="bcrypt hash")
    role: Role = "user"
    coach_status: CoachStatus = Field("none", description="none, pending, approved or rejected")
    coach_request_id: Optional[str] = None
    coach_profile_id: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    specialization: Optional[str] = Field(None, max_length=200)
    years_of_experience: Optional[int] = Field(None, ge=0, le=100)
    phone: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[str] = None
    goal: Optional[str] = Field(None, max_length=200)
    preferences: Preferences = Field(default_factory=Preferences)
    is_email_verified: bool = False
    verification_token: Optional[str] = None
    verification_token_expires: Optional[datetime] = None
    is_active: bool = True
    is_banned: bool = False
    status_changed_at: Optional[datetime] = None
    status_changed_by: Optional[str] = None
    status_change_reason: Optional[str] = None
    last_login: Optional[datetime] = None
    login_count: int = Field(0, ge=0)


# ---------------------------------------------------------------------
# Focus tracking
# ---------------------------------------------------------------------

class Session(Document):
    """A single timed focus interval."""
    user_id: str
    category: str = Field(..., description="e.g. Study, Work, Reading")
    duration: int = Field(..., gt=0, description="Minutes")
    started_at: datetime
    ended_at: Optional[datetime] = None
    completed: bool = False


class Progress(Document):
    """Per-user accumulator updated whenever a session ends."""
    user_id: str
    total_minutes: int = 0
    sessions_completed: int = 0


class Goal(Document):
    user_id: str
    goal_text: str


Distraction = Literal[
    "social-media", "notifications", "messages", "noise",
    "procrastination", "multitasking", "overwhelmed",
]


class SurveyAnswers(Document):
    """Onboarding questionnaire answers."""
    main_goal: Optional[Literal["study", "screen-time", "deep-work", "exams", "habit-streaks", "other"]] = None
    desired_hours_per_day: Optional[Literal["under-1", "1-2", "2-4", "4plus"]] = None
    current_hours_per_day: Optional[float] = Field(None, ge=0, le=24)
    distractions: List[Distraction] = Field(default_factory=list, max_length=3)
    lose_focus_when: Optional[Literal["within-10", "20-30", "mid-session", "late-night", "randomly"]] = None
    productivity_style: Optional[Literal["pomodoro", "deep-work", "flexible", "not-sure"]] = None
    upcoming_events: Optional[bool] = None
    motivation_style: Optional[Literal["streaks", "messages", "competition", "analytics", "accountability"]] = None
    stats_visibility: Optional[Literal["yes", "selected", "no"]] = None
    consistency: Optional[int] = Field(None, ge=1, le=5)


class Survey(Document):
    user_id: str
    answers: SurveyAnswers


# ---------------------------------------------------------------------
# Coaching
# ---------------------------------------------------------------------

class Certification(Document):
    name: str
    issuer: Optional[str] = None
    year: Optional[int] = None
    certificate_url: Optional[str] = None


class SocialLinks(Document):
    linkedin: Optional[str] = None
    website: Optional[str] = None
    twitter: Optional[str] = None
    instagram: Optional[str] = None


class CoachRequest(Document):
    """An application to become a coach, decided exactly once by an admin."""
    user_id: str
    expertise: List[str] = Field(..., min_length=1, max_length=5)
    bio: str = Field(..., min_length=100, max_length=1000)
    experience: str = Field(..., min_length=50, max_length=1000)
    certifications: List[Certification] = Field(default_factory=list)
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    status: Literal["pending", "approved", "rejected"] = "pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    admin_notes: Optional[str] = None


class CoachProfile(Document):
    """Public coach profile, one per approved coach."""
    user_id: str
    display_name: str
    avatar: Optional[str] = None
    bio: str = Field(..., max_length=1000)
    expertise: List[str] = Field(..., min_length=1, max_length=10)
    experience: Optional[str] = Field(None, max_length=1000)
    certifications: List[Certification] = Field(default_factory=list)
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = 0
    total_mentees: int = 0
    active_mentees: int = 0
    completed_sessions: int = 0
    is_available: bool = True
    max_mentees: int = Field(10, ge=1, le=100)
    is_publicly_visible: bool = True
    is_verified: bool = True
    verified_at: Optional[datetime] = None


ActionType = Literal["deactivate", "activate", "ban", "unban", "delete", "update", "password_reset"]


class AdminAction(Document):
    """Append-only audit record of an admin acting on a user."""
    action_type: ActionType
    reason: Optional[str] = None
    target_user_id: str
    target_user_email: Optional[str] = None
    target_user_name: Optional[str] = None
    admin_id: str
    admin_email: Optional[str] = None
    admin_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None


# ---------------------------------------------------------------------
# Community
# ---------------------------------------------------------------------

class Community(Document):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_public: bool = True
    tags: List[str] = Field(default_factory=list)
    created_by: str
    members: List[str] = Field(default_factory=list)


class Comment(Document):
    author: str
    author_name: Optional[str] = None
    text: str = Field(..., min_length=1, max_length=1000)
    created_at: datetime


class CommunityPost(Document):
    community_id: str
    author: str
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None
    content: str = Field(..., min_length=1, max_length=5000)
    tags: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)


# ---------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------

ChallengeCategory = Literal[
    "focus", "productivity", "mindfulness", "health", "learning",
    "creativity", "social", "habits", "fitness", "other",
]


class Duration(Document):
    value: int = Field(..., ge=1)
    unit: Literal["days", "weeks", "months"] = "days"


class ChallengeTemplate(Document):
    """A reusable challenge definition users can join."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    category: ChallengeCategory = "focus"
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    duration: Duration
    target_metric: Optional[str] = None
    target_value: float = Field(0, ge=0)
    target_unit: Optional[str] = None
    points_reward: int = Field(0, ge=0)
    is_public: bool = True
    is_active: bool = True
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list)
    total_participants: int = 0
    total_completions: int = 0
    created_by: str


class DailyProgress(Document):
    date: datetime
    value: float = 0
    notes: Optional[str] = None
    completed: bool = False


class Challenge(Document):
    """A user's participation in a challenge template."""
    template_id: str
    user_id: str
    title: str
    description: str
    category: str
    difficulty: str
    duration: Duration
    target_metric: Optional[str] = None
    target_value: float = 0
    target_unit: Optional[str] = None
    status: Literal["not_started", "in_progress", "completed", "failed", "abandoned"] = "not_started"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    current_progress: float = 0
    progress_percentage: float = Field(0, ge=0, le=100)
    daily_progress: List[DailyProgress] = Field(default_factory=list)
    streak_count: int = 0
    longest_streak: int = 0
    points_reward: int = 0
    points_earned: int = 0
    badge_earned: bool = False


# ---------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------

GameCategory = Literal["focus", "memory", "puzzle", "relaxation", "creativity", "strategy", "reflex", "other"]
SubmissionStatus = Literal["Draft", "In Review", "Changes Requested", "Approved", "Published", "Rejected"]
ChangePriority = Literal["Low", "Medium", "High", "Critical"]
ChangeCategory = Literal[
    "Functionality", "Policy Compliance", "Content", "Performance", "UI/UX", "Documentation", "Other",
]


class Screenshot(Document):
    url: str
    file_name: Optional[str] = None
    order: int = 0


class RequestedChange(Document):
    change: str = Field(..., min_length=1, max_length=1000)
    priority: ChangePriority = "Medium"
    category: ChangeCategory = "Other"
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class Game(Document):
    """A developer-submitted game moving through the review pipeline."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: GameCategory = "focus"
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    game_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    cover_image_url: Optional[str] = None
    screenshots: List[Screenshot] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    min_play_time: Optional[int] = None
    max_play_time: Optional[int] = None
    developer_id: str
    developer_name: Optional[str] = None
    version: str = "1.0.0"
    submission_status: SubmissionStatus = "Draft"
    is_locked: bool = False
    requested_changes: List[RequestedChange] = Field(default_factory=list)
    reviewer_comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    is_public: bool = False
    is_active: bool = True
    total_plays: int = 0
    total_players: int = 0
    total_play_time: int = 0
    average_session_length: float = 0


class GameVersion(Document):
    """Immutable snapshot of a game's content at one point in time."""
    game_id: str
    version_number: str
    version_tag: Literal["stable", "resubmission", "revert"] = "stable"
    snapshot: Dict[str, Any]
    status: SubmissionStatus = "Draft"
    change_log: Optional[str] = None
    changes: List[Dict[str, Any]] = Field(default_factory=list)
    created_by: str
    is_current_version: bool = True
    is_approved: bool = False
    is_published: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewer_comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    is_revert: bool = False
    reverted_from: Optional[str] = None
    reverted_to: Optional[str] = None
    reverted_at: Optional[datetime] = None
    reverted_by: Optional[str] = None


class GameReview(Document):
    """A reviewer's verdict on one submitted version."""
    game_id: str
    version_id: Optional[str] = None
    reviewer_id: str
    status: Literal["In Progress", "Approved", "Changes Requested", "Rejected"] = "In Progress"
    overall_comments: Optional[str] = Field(None, max_length=5000)
    functionality_test: Dict[str, Any] = Field(default_factory=dict)
    policy_compliance: Dict[str, Any] = Field(default_factory=dict)
    content_review: Dict[str, Any] = Field(default_factory=dict)
    performance_test: Dict[str, Any] = Field(default_factory=dict)
    uiux_evaluation: Dict[str, Any] = Field(default_factory=dict)
    requested_changes: List[RequestedChange] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    review_duration: Optional[int] = Field(None, description="Minutes between start and completion")


class GameSession(Document):
    game_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int = Field(0, ge=0, description="Seconds")
    score: Optional[float] = None
    level: Optional[int] = None
    completed: bool = False
    device_type: Optional[Literal["desktop", "mobile", "tablet"]] = None


# ---------------------------------------------------------------------
# Licenses
# ---------------------------------------------------------------------

EngineName = Literal[
    "Unity", "Unreal Engine", "Godot", "Phaser", "PixiJS", "Three.js", "Babylon.js",
    "Custom/Vanilla JS", "HTML5 Canvas", "WebGL", "Other",
]
EngineLicenseType = Literal[
    "Free/Open Source", "Personal License", "Commercial License", "Educational License",
    "Indie License", "Enterprise License", "Not Applicable",
]
AssetLicenseType = Literal[
    "CC0 (Public Domain)", "CC BY (Attribution)", "CC BY-SA (Share Alike)", "CC BY-NC (Non-Commercial)",
    "MIT License", "Apache License", "GPL", "Commercial License", "Royalty-Free",
    "Custom License", "All Rights Reserved",
]
LicenseStatus = Literal["Pending", "In Review", "Approved", "Rejected", "Needs Revision"]


class Engine(Document):
    name: Optional[EngineName] = None
    version: Optional[str] = None
    license_type: Optional[EngineLicenseType] = None
    license_details: Optional[str] = Field(None, max_length=1000)


class Asset(Document):
    asset_type: Literal[
        "Images/Graphics", "Audio/Music", "Fonts", "3D Models", "Animations",
        "Code/Scripts", "UI Elements", "Icons", "Other",
    ]
    asset_name: str = Field(..., max_length=200)
    source: Literal[
        "Original Creation", "Licensed Stock", "Free/CC Licensed", "Open Source",
        "Purchased", "Third-Party Library", "Other",
    ]
    license_type: AssetLicenseType
    attribution: Optional[str] = Field(None, max_length=500)
    source_url: Optional[str] = Field(None, max_length=500)


class IntellectualProperty(Document):
    ownership_status: Optional[Literal["Sole Owner", "Co-Owner", "Licensed", "Work for Hire", "Open Source"]] = None
    ownership_details: Optional[str] = Field(None, max_length=1000)
    copyright_holder: Optional[str] = Field(None, max_length=200)
    copyright_year: Optional[int] = None


class Declarations(Document):
    ownership_confirmed: bool = False
    no_infringement: bool = False
    accurate_information: bool = False
    agreement_accepted: bool = False


class ComplianceChecks(Document):
    engine_license_valid: Optional[bool] = None
    assets_documented: Optional[bool] = None
    ip_ownership_clear: Optional[bool] = None
    files_authentic: Optional[bool] = None
    attributions_complete: Optional[bool] = None


class LicenseValidation(Document):
    status: LicenseStatus = "Pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)
    compliance_checks: ComplianceChecks = Field(default_factory=ComplianceChecks)


class License(Document):
    """Engine, asset and IP compliance declarations for one game."""
    game_id: str
    developer_id: str
    engine: Engine = Field(default_factory=Engine)
    assets: List[Asset] = Field(default_factory=list)
    intellectual_property: IntellectualProperty = Field(default_factory=IntellectualProperty)
    uploaded_files: List[Dict[str, Any]] = Field(default_factory=list)
    declarations: Declarations = Field(default_factory=Declarations)
    validation: LicenseValidation = Field(default_factory=LicenseValidation)
    additional_notes: Optional[str] = Field(None, max_length=5000)
    submitted_at: Optional[datetime] = None
    version: int = 1


# ---------------------------------------------------------------------
# Audio library
# ---------------------------------------------------------------------

AudioCategory = Literal[
    "meditation", "focus", "sleep", "relaxation", "nature_sounds", "breathing",
    "guided_meditation", "music", "affirmations", "white_noise", "binaural_beats", "other",
]


class AudioFile(Document):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    file_name: str
    file_path: str
    file_url: str
    file_size: int = Field(..., ge=0)
    mime_type: str
    duration: Optional[int] = Field(None, ge=0, description="Seconds")
    format: Optional[str] = None
    category: AudioCategory = "focus"
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    is_active: bool = True
    play_count: int = 0
    uploaded_by: str
