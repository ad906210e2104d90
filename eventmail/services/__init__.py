"""
Engine services:

- recurrence.py: next-run arithmetic for timed jobs
- process_executor.py: external commands with bounded retries
- parameter_binder.py: stored procedure parameter typing and invocation
- alert_composer.py: triggered-row filtering and HTML alerts
- notifiers.py: SMTP and Microsoft Graph mail transports
"""
