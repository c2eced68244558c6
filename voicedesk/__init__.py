"""
voicedesk: real-time telephone help-desk voice agent.

Bridges a Twilio-style media stream to streaming speech recognition, a chat
model and speech synthesis, and files one support ticket per call.
"""

__version__ = "1.0.0"
