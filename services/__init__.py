"""
Services package for Focus Sentinel.

This package contains clients for the external AI capabilities:
- Reasoning service: Azure OpenAI chat completions in JSON mode
- Escalation pipeline: gated two-stage analysis when the anomaly score saturates
- Speech bridge: Azure OpenAI realtime session (text/mic in, synthesized audio out)
"""
