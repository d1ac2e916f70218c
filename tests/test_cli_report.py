"""
Tests para el comando ``flask twofa-report`` de backend/run.py.
"""
import uuid

import pytest

from backend.app.extensions import db
from backend.app.models import TwoFactorBackupCode, TwoFactorCredential, Users


@pytest.fixture()
def cli_app():
    from backend.run import app as run_app
    with run_app.app_context():
        db.create_all()
    yield run_app
    with run_app.app_context():
        db.session.remove()
        db.drop_all()


def test_report_without_users(cli_app):
    from backend.run import twofa_report
    result = cli_app.test_cli_runner().invoke(twofa_report)
    assert result.exit_code == 0
    assert "Sin usuarios registrados." in result.output


def test_report_counts_per_organization(cli_app):
    from backend.run import twofa_report
    org = uuid.uuid4()
    with cli_app.app_context():
        enabled_user = Users(email="enabled@lexdesk.test", organization_id=org)
        pending_user = Users(email="pending@lexdesk.test", organization_id=org)
        db.session.add_all([
            enabled_user,
            pending_user,
            Users(email="plain@lexdesk.test", organization_id=org),
        ])
        db.session.flush()
        enabled = TwoFactorCredential(owner_id=enabled_user.id, organization_id=org, state="enabled", secret="JBSWY3DPEHPK3PXP")
        enabled.backup_codes = [
            TwoFactorBackupCode(position=0, code_hash="x"),
            TwoFactorBackupCode(position=1, code_hash="y"),
        ]
        db.session.add_all([
            enabled,
            TwoFactorCredential(owner_id=pending_user.id, organization_id=org, state="pending_verification", secret="JBSWY3DPEHPK3PXP"),
        ])
        db.session.commit()

    result = cli_app.test_cli_runner().invoke(twofa_report, ["--organization", str(org)])
    assert result.exit_code == 0
    line = next(row for row in result.output.splitlines() if row.startswith(str(org)))
    assert line.split()[1:] == ["3", "1", "1", "2"]
