# /chatflow/config/strings.py

# User-facing strings used when the engine itself cannot produce a reply.
# Kept here so they can be reworded without touching application logic.

GENERIC_ERROR_REPLY = (
    "I'm sorry, something went wrong while handling your message. "
    "Please try again in a moment."
)

INVALID_MESSAGE_REPLY = "Sorry, I couldn't read that message. Could you send it again as text?"

