"""Event subscriptions with capacity limits and next-day email reminders."""
