"""
Tests for ProfileStore.
"""

import pytest

from portalflow.core.exceptions import StepConfigurationError
from portalflow.core.integrations.profiles import ProfileStore
from portalflow.models import ApiSettings, EmailConfig, SecondaryApiConfig, SftpConfig


# ============================================================================
# API PROFILE TESTS
# ============================================================================

@pytest.mark.unit
def test_main_profile_without_settings(db_session):
    """Test an unconfigured main API has an empty base URL"""
    profile = ProfileStore(db_session).get_api_profile("main")

    assert profile.base_url == ""
    assert profile.auth_headers() == {}


@pytest.mark.unit
def test_main_profile(db_session):
    """Test the main API settings row"""
    db_session.add(ApiSettings(base_url="https://tms.test/api", auth_token="tok"))
    db_session.commit()

    profile = ProfileStore(db_session).get_api_profile()

    assert profile.base_url == "https://tms.test/api"
    assert profile.auth_headers() == {"Authorization": "Bearer tok"}


@pytest.mark.unit
def test_secondary_profile(db_session):
    """Test active secondary profiles resolve and inactive ones do not"""
    active = SecondaryApiConfig(name="Carrier", base_url="https://carrier.test", auth_token="c")
    inactive = SecondaryApiConfig(name="Old", base_url="https://old.test", is_active=False)
    db_session.add_all([active, inactive])
    db_session.commit()

    store = ProfileStore(db_session)

    assert store.get_api_profile("secondary", active.id).name == "Carrier"
    with pytest.raises(StepConfigurationError, match="not found"):
        store.get_api_profile("secondary", inactive.id)
    with pytest.raises(StepConfigurationError, match="no secondaryApiId"):
        store.get_api_profile("secondary", None)


# ============================================================================
# SFTP / EMAIL PROFILE TESTS
# ============================================================================

@pytest.mark.unit
def test_sftp_profile_prefers_default(db_session):
    """Test the default SFTP profile wins when no id is given"""
    db_session.add_all([
        SftpConfig(host="first.test", username="u"),
        SftpConfig(host="default.test", username="u", is_default=True, json_path="/in/json"),
    ])
    db_session.commit()

    profile = ProfileStore(db_session).get_sftp_profile()

    assert profile.host == "default.test"
    assert profile.port == 22
    assert profile.directory_for("json") == "/in/json"
    assert profile.directory_for("pdf") is None


@pytest.mark.unit
def test_sftp_profile_missing(db_session):
    """Test no SFTP configuration is a configuration error"""
    with pytest.raises(StepConfigurationError, match="No SFTP configuration"):
        ProfileStore(db_session).get_sftp_profile()


@pytest.mark.unit
def test_email_profile_by_id(db_session):
    """Test an explicit email profile id"""
    config = EmailConfig(smtp_host="smtp.test", from_address="bot@test", use_tls=False)
    db_session.add(config)
    db_session.commit()

    profile = ProfileStore(db_session).get_email_profile(config.id)

    assert profile.smtp_host == "smtp.test"
    assert profile.smtp_port == 587
    assert profile.use_tls is False
