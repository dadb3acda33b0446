"""Panchayat Community Portal: notice board, voice feedback and AI assistant chat."""
