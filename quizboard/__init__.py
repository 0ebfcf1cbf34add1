"""
Quizboard backend.

User store and leaderboard engine for the quiz application, served as a
FastAPI application over either a local SQLite file or a MySQL server.
"""
