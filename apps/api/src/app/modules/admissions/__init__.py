"""
Admissions Module

Application and document lifecycle of the registration portal:
1. Candidate profile with a declaration-backed lock
2. Course applications: apply, pay, book an appointment, upload documents
3. Staff review of documents and applications, gated by capabilities
4. Conditional writes with bounded retries for concurrent reviewers

API Endpoints:
- /admissions/me/... - Candidate operations on their own account
- /admissions/slots - Published appointment slots
- /admin/admissions/... - Staff and admin operations
"""

from .router import router

__all__ = ["router"]
