"""Microlearn — backend for a microlearning course marketplace.

Learners browse and enroll in courses, instructors publish them. Identity,
row storage and row-level security are delegated to a hosted Postgres +
auth service; this package reconciles sessions with learner/instructor
profiles and exposes the thin server routes around that.
"""

__version__ = "0.1.0"
