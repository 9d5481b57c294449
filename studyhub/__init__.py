"""StudyHub presence service."""
