"""Session tracking and daily usage accounting."""
