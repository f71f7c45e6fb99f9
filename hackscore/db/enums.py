# db/enums.py
import enum

class UserRole(enum.StrEnum):
    ADMIN = "admin"
    PARTICIPANT = "participant"

class EventStatus(enum.StrEnum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    JUDGING = "judging"
    COMPLETED = "completed"

class SubmissionStatus(enum.StrEnum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under-review"
    APPROVED = "approved"
    REJECTED = "rejected"

class JudgingStatus(enum.StrEnum):
    PENDING = "pending"
    JUDGING = "judging"
    JUDGED = "judged"

class ScoreSource(enum.StrEnum):
    JUDGE = "judge"
    AUTO = "auto"

class RecomputeReason(enum.StrEnum):
    VOTE = "vote"
    JUDGE_SCORES = "judge_scores"
    AUTO_JUDGE = "auto_judge"
    STATUS_CHANGE = "status_change"
    SUBMISSION_DELETED = "submission_deleted"
