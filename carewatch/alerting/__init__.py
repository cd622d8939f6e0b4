"""
CareWatch Alerting.

Components:
- schemas: Enums, event/alert request bodies, read models
- rules: Danger classification and severity grading
- cooldown: Per (subject, condition) alert-storm suppression
- aggregate: Alert state machine, notification ledger, escalation history
- store: Persistence facade with per-alert locking
- messages: Email / SMS / push renderings of an alert
- dispatcher: Multi-channel fan-out with tracked background delivery
- escalation: Lifecycle orchestration, SOS, escalation ladder, sweep
- sweeper: Periodic sweep scheduling
"""
