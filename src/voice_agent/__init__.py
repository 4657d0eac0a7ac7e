"""Meeting voice agent service -- webhook-driven conversational agent for video calls."""
