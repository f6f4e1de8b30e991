"""
Clubhouse service: persistence, remote sync, reminders, event fan-out and
the coordinators that drive the matchday engine, behind a Flask JSON API.
"""
