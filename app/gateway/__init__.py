"""LLM provider-forwarding gateway.

Stateless pipeline that forwards chat-completion requests to upstream providers:
  - Request Normalizer (validation, defaults, token clamping)
  - Provider Adapters (per-provider wire encoding and error mapping)
  - Call Executor (deadlines and the shared retry policy)
  - Stream Relay (server-sent-event re-framing)
  - Response Translator (uniform success and error envelopes)
"""
