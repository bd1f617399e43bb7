"""
Attendance Reporting Engine

Resolves attendance sessions, member cohorts and per-session eligibility
from Supabase and aggregates attendance records into report data.
"""

__version__ = "1.0.0"
