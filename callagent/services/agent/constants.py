"""Constants for response fallback and turn taking."""

# Keyword categories checked in order; first hit wins
PRICING_INDICATORS = ["pricing", "price", "cost"]

SUPPORT_INDICATORS = ["support", "help", "problem"]

PRODUCT_INDICATORS = ["product", "feature", "service"]

# Matched as whole words
GREETING_INDICATORS = ["hello", "hi", "hey", "good morning", "good afternoon", "good evening"]

FALLBACK_RESPONSES = {
    "pricing": (
        "I'd be happy to help with pricing information. We offer several plans to "
        "meet different needs. Would you like me to connect you with our sales team "
        "for detailed pricing?"
    ),
    "support": (
        "I understand you need support. Our team is available 24/7 to help you. "
        "Would you like me to transfer you to a support specialist?"
    ),
    "product": (
        "I'd be happy to tell you about our products and services. We offer "
        "comprehensive solutions for businesses. What specific area would you like "
        "to know more about?"
    ),
    "greeting": (
        "Hello! Thank you for calling. I'm here to help you with any questions about "
        "our services. What can I assist you with today?"
    ),
    "default": (
        "I understand you're asking about that. Let me help you - could you please "
        "be more specific about what information you need?"
    ),
}

KNOWLEDGE_FALLBACK_TEMPLATE = "Here's what I can tell you: {content} Is there anything else you'd like to know?"

SUMMARY_UNAVAILABLE = "Conversation summary not available due to technical issues."

# Spoken on the live call path
REPROMPT_MESSAGE = "I didn't catch that. Could you please repeat?"
FAREWELL_MESSAGE = (
    "I apologize, but I'm having trouble hearing you. Please try calling back. Goodbye!"
)
APOLOGY_MESSAGE = "I'm sorry, I encountered an error. Could you please try again?"
CALL_ENDED_MESSAGE = "Thank you for calling. Goodbye!"

# Provider statuses that end a call
TERMINAL_CALL_STATUSES = ["completed", "failed", "busy", "no-answer", "canceled"]
ANSWERED_CALL_STATUSES = ["in-progress", "answered"]
