"""
Voice agent for LiveKit rooms.

Conversational turn pipeline: VAD -> STT -> LLM (+ tools) -> TTS

- Each AI capability sits behind a small stage interface (stages.py) and is
  backed by a LiveKit Agents plugin (livekit_stages.py)
- SessionOrchestrator owns the turn loop, barge-in and the tool invocation
  protocol (orchestrator.py, tools.py)
- All behavior is observable via structured logs and events
"""
