"""
Scenario definitions (YAML).

Each scenario file provides:
- name: scenario identifier
- prompt: system prompt seeded as the first conversation turn
- greeting_text: opening line spoken when the participant joins
"""
