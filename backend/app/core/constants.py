"""Application-wide constants for the lesson registration engine."""

from __future__ import annotations

BRAND_NAME = "Tonic Music Program"

# Lesson slot constraints
VALID_LESSON_LENGTHS = (15, 30, 45, 60)  # minutes
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

# Term partitioning
VALID_TRIMESTERS = ("Fall", "Winter", "Spring")
TRIMESTER_START_MONTHS = {"Fall": 8, "Winter": 12, "Spring": 3}

# Grade levels in ascending order; index is used for range comparisons
GRADE_LEVELS = ["PK", "K", "1", "2", "3", "4", "5", "6", "7", "8", "9", "10", "11", "12"]

# Text constraints
MAX_NOTES_LENGTH = 1000
MAX_REASON_LENGTH = 255

SYSTEM_USER_ID = "system"

# API metadata
API_TITLE = f"{BRAND_NAME} Registration API"
API_DESCRIPTION = "Lesson registration engine: registrations, cancellations and schedules"
API_VERSION = "1.0.0"
