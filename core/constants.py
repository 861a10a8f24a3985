"""
Application-wide constants.

These constants are used across the codebase for consistency and maintainability.
"""

# Reserved conversation id meaning "create a conversation for this turn".
NEW_CONVERSATION_SENTINEL = "new"

# Returned by the AI gateway when the completion service fails.
AI_FALLBACK_REPLY = "Sorry, something went wrong while generating a response."

# Returned when the completion service answers without any content.
AI_EMPTY_REPLY = "Sorry, I couldn't generate a response."

# WebSocket close code for handshake authentication failures.
WS_CLOSE_UNAUTHORIZED = 4001
