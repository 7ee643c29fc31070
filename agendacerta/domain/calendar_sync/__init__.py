"""Booking -> Google Calendar sync: credentials, token refresh and event operations"""
