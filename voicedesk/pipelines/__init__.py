"""Vendor adapters (recognizer, responder, synthesizer, transcoder) and their contracts."""
