"""
Integration clients for external services.

This module provides clients for:
- HTTP: REST calls made by API steps
- Profiles: main/secondary API, SFTP and SMTP settings from the database
- SFTP: payload uploads
- Mailer: SMTP delivery
- Storage / DocumentStore: payload files and imaging documents
"""

from .http_client import HttpClient, HttpResponse
from .profiles import ProfileStore, ApiProfile, SftpProfile, EmailProfile
from .sftp import SftpClient
from .mailer import Mailer, OutgoingEmail, EmailAttachment
from .storage import FileStorage
from .document_store import DocumentStore

__all__ = [
    "HttpClient",
    "HttpResponse",
    "ProfileStore",
    "ApiProfile",
    "SftpProfile",
    "EmailProfile",
    "SftpClient",
    "Mailer",
    "OutgoingEmail",
    "EmailAttachment",
    "FileStorage",
    "DocumentStore",
]
