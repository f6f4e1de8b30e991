#!/usr/bin/env python3
"""
Entry point for the Clubhouse service.

Usage:
    python run.py                    # Run the API (default)
    python run.py api                # Run the API explicitly
    python run.py reminders          # Poll Redis for due match reminders

Environment Variables:
    FLASK_ENV: development, testing or production (default: development)
    PORT: Port to run the API on (default: 5000)
    REMINDER_POLL_SECONDS: Reminder poll interval (default: 30)
"""
import logging
import os
import sys
import time


def run_api():
    """Run the JSON API."""
    from clubhouse.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Clubhouse API on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


def run_reminder_worker():
    """Log every reminder that is due and remove it from the queue."""
    import redis
    from clubhouse.config import config
    from clubhouse.reminders import RedisReminderScheduler

    settings = config[os.getenv('FLASK_ENV', 'development')]
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    scheduler = RedisReminderScheduler(client, lead_minutes=settings.REMINDER_LEAD_MINUTES)
    interval = int(os.getenv('REMINDER_POLL_SECONDS', 30))
    logger = logging.getLogger('clubhouse.reminders.worker')

    print(f"Polling for due reminders every {interval}s...")
    while True:
        for reminder in scheduler.due_reminders():
            logger.info(f"Reminder for {reminder.user_id}: {reminder.body}")
            scheduler.cancel(reminder.match_id, reminder.user_id)
        time.sleep(interval)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    mode = sys.argv[1] if len(sys.argv) > 1 else 'api'

    if mode == 'api':
        run_api()
    elif mode == 'reminders':
        run_reminder_worker()
    else:
        print(f"Unknown mode: {mode}")
        print("Usage: python run.py [api|reminders]")
        sys.exit(1)
