from __future__ import annotations

from pathlib import Path

import pytest

from b2c_policy_trace.processor import PolicyFile

FIXTURES = Path(__file__).parent / "fixtures"

CHAIN_FILES = ("TrustFrameworkBase.xml", "TrustFrameworkExtensions.xml", "SignUpOrSignIn.xml")


def fixture_path(name: str) -> Path:
    return FIXTURES / name


def load_fixture(name: str) -> str:
    return fixture_path(name).read_text(encoding="utf-8")


def policy_file(name: str) -> PolicyFile:
    return PolicyFile(name, load_fixture(name))


def policy_xml(policy_id: str, body: str = "", base: str | None = None, tenant: str = "contoso.onmicrosoft.com") -> str:
    base_xml = ""
    if base:
        base_xml = f"<BasePolicy><TenantId>{tenant}</TenantId><PolicyId>{base}</PolicyId></BasePolicy>"
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<TrustFrameworkPolicy xmlns="http://schemas.microsoft.com/online/cpim/schemas/2013/06" '
        f'PolicyId="{policy_id}" TenantId="{tenant}">'
        f"{base_xml}{body}</TrustFrameworkPolicy>"
    )


def claims_provider(name: str, *profiles: str) -> str:
    return (
        "<ClaimsProviders><ClaimsProvider>"
        f"<DisplayName>{name}</DisplayName>"
        f"<TechnicalProfiles>{''.join(profiles)}</TechnicalProfiles>"
        "</ClaimsProvider></ClaimsProviders>"
    )


@pytest.fixture
def chain_files() -> list[PolicyFile]:
    return [policy_file(name) for name in CHAIN_FILES]
