# /chatflow/workflows/definitions.py

"""
Built-in flow definitions.

This module defines flow graphs as pure data (no logic). A definition is a
mapping of node ids to nodes, in priority order: when several triggers match
an inbound message, the one declared first wins.

Node types:
- trigger: match_phrases + next
- prompt: text (with {{variable}} placeholders), optional expects, next
- action: function, retries, next = {success, error, human}
- exit: reason

Every definition must contain an exit node named "error_exit"; it is the
reply used when an action exhausts its retries.
"""

from typing import Dict, Any

# Type definition for a raw flow document
FlowDocument = Dict[str, Any]

DEFAULT_FLOW: FlowDocument = {
    "nodes": {
        "track_order": {
            "type": "trigger",
            "match_phrases": ["track my order", "where is my order", "order status"],
            "next": "ask_order_id"
        },
        "ask_order_id": {
            "type": "prompt",
            "text": "What is your order id?",
            "expects": "order_id",
            "next": "lookup_order"
        },
        "lookup_order": {
            "type": "action",
            "function": "get_order_status",
            "retries": 1,
            "next": {
                "success": "order_found",
                "error": "ask_order_id_again",
                "human": "handoff_exit"
            }
        },
        "ask_order_id_again": {
            "type": "prompt",
            "text": "I couldn't find order {{order_id}}. Please check the id and send it again.",
            "expects": "order_id",
            "next": "lookup_order"
        },
        "order_found": {
            "type": "prompt",
            "text": "Your order is: {{status}}",
            "next": "done_exit"
        },
        "done_exit": {
            "type": "exit",
            "reason": "Thanks for contacting us! Is there anything else I can help with?"
        },
        "handoff_exit": {
            "type": "exit",
            "reason": "I'm connecting you with a member of our team. They will reply here shortly."
        },
        "error_exit": {
            "type": "exit",
            "reason": "Sorry, we couldn't complete your request right now. Please try again later."
        }
    }
}

# Order ids known to the demo order lookup action.
DEMO_ORDERS: Dict[str, str] = {
    "A123": "Shipped",
}
