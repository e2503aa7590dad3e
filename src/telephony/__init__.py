"""Per-call relay between a Twilio Media Stream and an OpenAI Realtime session.

Each accepted media WebSocket gets one CallSession; the AdmissionGate bounds
how many run at once.
"""
