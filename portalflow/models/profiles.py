"""
Profile Models
Per-tenant connection settings consumed by step executors
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean

from ..core.context import utc_now
from . import Base


class ApiSettings(Base):
    """The main API profile (single row)."""
    __tablename__ = "api_settings"

    id = Column(Integer, primary_key=True, index=True)
    base_url = Column(String(500), nullable=False, default="")
    auth_token = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


class SecondaryApiConfig(Base):
    """Named secondary API profiles."""
    __tablename__ = "secondary_api_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    base_url = Column(String(500), nullable=False, default="")
    auth_token = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<SecondaryApiConfig(id={self.id}, name='{self.name}')>"


class SftpConfig(Base):
    __tablename__ = "sftp_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    host = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=22)
    username = Column(String(255), nullable=False)
    password = Column(Text, nullable=True)
    private_key = Column(Text, nullable=True)

    # Default remote directories per payload type
    pdf_path = Column(String(500), nullable=True)
    json_path = Column(String(500), nullable=True)
    csv_path = Column(String(500), nullable=True)
    xml_path = Column(String(500), nullable=True)

    is_default = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<SftpConfig(id={self.id}, host='{self.host}')>"


class EmailConfig(Base):
    __tablename__ = "email_configs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    smtp_host = Column(String(255), nullable=False)
    smtp_port = Column(Integer, nullable=False, default=587)
    smtp_username = Column(String(255), nullable=True)
    smtp_password = Column(Text, nullable=True)
    use_tls = Column(Boolean, nullable=False, default=True)
    from_address = Column(String(255), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<EmailConfig(id={self.id}, smtp_host='{self.smtp_host}')>"
