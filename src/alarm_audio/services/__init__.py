"""Alarm audio services.

- audio_queue: queue store operations (claim, terminal writes, reconciliation)
- dispatcher: bounded-concurrency processing of claimed items
- status_reporter: terminal status writes
- trigger: claim-and-dispatch entry point
- alarm_audio: per-alarm audio generation and the queue worker
- script_generator, speech, storage: OpenAI and object storage clients
- rate_limit, event_log: shared helpers
- pipeline: wiring from settings
"""
