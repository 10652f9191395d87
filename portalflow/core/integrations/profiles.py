"""
Connection profile lookup.

Steps never read connection settings from their own config; they name a
profile (main API, a secondary API, an SFTP or SMTP configuration) and
the ProfileStore resolves it from the database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import StepConfigurationError
from ...models.profiles import ApiSettings, SecondaryApiConfig, SftpConfig, EmailConfig

logger = logging.getLogger(__name__)


@dataclass
class ApiProfile:
    """Base URL and bearer token of a REST API"""
    base_url: str
    auth_token: Optional[str]
    name: str = "main"

    def auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.auth_token}"} if self.auth_token else {}


@dataclass
class SftpProfile:
    """SFTP credentials and per-payload default directories"""
    id: int
    host: str
    port: int
    username: str
    password: Optional[str]
    private_key: Optional[str]
    pdf_path: Optional[str]
    json_path: Optional[str]
    csv_path: Optional[str]
    xml_path: Optional[str]

    def directory_for(self, upload_type: str) -> Optional[str]:
        return getattr(self, f"{upload_type}_path", None)


@dataclass
class EmailProfile:
    """SMTP credentials"""
    id: int
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    use_tls: bool
    from_address: str


class ProfileStore:
    """Reads connection profiles from the database."""

    def __init__(self, session: Session):
        self.session = session

    def get_api_profile(self, source_type: Optional[str] = "main", secondary_id: Optional[int] = None) -> ApiProfile:
        """
        Resolve the main API or a secondary API profile.

        Raises:
            StepConfigurationError: If the secondary profile does not exist
        """
        if source_type == "secondary":
            if not secondary_id:
                raise StepConfigurationError("Secondary API selected but no secondaryApiId configured")
            config = self.session.get(SecondaryApiConfig, int(secondary_id))
            if config is None or not config.is_active:
                raise StepConfigurationError(f"Secondary API configuration {secondary_id} not found")
            return ApiProfile(base_url=config.base_url or "", auth_token=config.auth_token, name=config.name)

        settings = self.session.query(ApiSettings).order_by(ApiSettings.id).first()
        if settings is None:
            return ApiProfile(base_url="", auth_token=None)
        return ApiProfile(base_url=settings.base_url or "", auth_token=settings.auth_token)

    def get_sftp_profile(self, config_id: Optional[int] = None) -> SftpProfile:
        """
        SFTP profile by id, else the default one, else the first one.

        Raises:
            StepConfigurationError: If no SFTP configuration exists
        """
        query = self.session.query(SftpConfig)
        if config_id:
            config = self.session.get(SftpConfig, int(config_id))
        else:
            config = (
                query.filter(SftpConfig.is_default.is_(True)).first()
                or query.order_by(SftpConfig.id).first()
            )
        if config is None:
            raise StepConfigurationError("No SFTP configuration found")

        return SftpProfile(
            id=config.id,
            host=config.host,
            port=config.port or 22,
            username=config.username,
            password=config.password,
            private_key=config.private_key,
            pdf_path=config.pdf_path,
            json_path=config.json_path,
            csv_path=config.csv_path,
            xml_path=config.xml_path,
        )

    def get_email_profile(self, config_id: Optional[int] = None) -> EmailProfile:
        """
        SMTP profile by id, else the default one, else the first one.

        Raises:
            StepConfigurationError: If no email configuration exists
        """
        query = self.session.query(EmailConfig)
        if config_id:
            config = self.session.get(EmailConfig, int(config_id))
        else:
            config = (
                query.filter(EmailConfig.is_default.is_(True)).first()
                or query.order_by(EmailConfig.id).first()
            )
        if config is None:
            raise StepConfigurationError("No email configuration found")

        return EmailProfile(
            id=config.id,
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port or 587,
            smtp_username=config.smtp_username,
            smtp_password=config.smtp_password,
            use_tls=bool(config.use_tls),
            from_address=config.from_address,
        )
