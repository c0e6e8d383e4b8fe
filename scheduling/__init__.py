"""Clinic scheduling application.

Appointment slots with finite capacity, booking requests moving through an
approval/attendance lifecycle, and the JSON API exposing both.
"""
