"""Student-Audit: transactional change auditing for student records."""

__version__ = "1.0.0"
