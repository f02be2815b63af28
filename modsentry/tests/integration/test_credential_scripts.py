from __future__ import annotations

import argparse

import pytest

from modsentry.core.errors import CredentialNotFound
from modsentry.domain.events import CATEGORY_CREDENTIAL_CREATED, CATEGORY_CREDENTIAL_REACTIVATED
from modsentry.tests.utils.stack import fetch_credential, fetch_events, set_credential_fields
from scripts import add_credential as add_credential_script
from scripts import list_credentials as list_credentials_script
from scripts import reactivate_credential as reactivate_credential_script


@pytest.mark.asyncio
async def test_operator_scripts_manage_pool(capsys) -> None:
    args = argparse.Namespace(name="primary", description=None, secret="sk-script", actor="ops-1")
    assert await add_credential_script._add_credential(args) == 0
    added = capsys.readouterr().out
    credential_id = added.split("id: ")[1].split()[0]
    assert "sk-script" not in added
    created = await fetch_events(category=CATEGORY_CREDENTIAL_CREATED)
    assert created[0].actor_ref == "ops-1"

    await set_credential_fields(credential_id, active=False, failure_count=5)
    listing = argparse.Namespace(inactive_only=True, include_removed=False)
    assert await list_credentials_script._list_credentials(listing) == 0
    listed = capsys.readouterr().out
    assert credential_id in listed
    assert "sk-script" not in listed

    reactivate = argparse.Namespace(credential_id=credential_id, actor="ops-1")
    assert await reactivate_credential_script._reactivate(reactivate) == 0
    row = await fetch_credential(credential_id)
    assert row.active is True
    assert row.failure_count == 0
    assert len(await fetch_events(category=CATEGORY_CREDENTIAL_REACTIVATED)) == 1


@pytest.mark.asyncio
async def test_reactivate_unknown_credential_fails() -> None:
    args = argparse.Namespace(credential_id="missing", actor="ops-1")
    with pytest.raises(CredentialNotFound):
        await reactivate_credential_script._reactivate(args)
